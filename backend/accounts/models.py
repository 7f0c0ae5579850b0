# backend/accounts/models.py

from django.contrib.auth.models import AbstractUser
from django.db import models


class CustomUser(AbstractUser):
    CUSTOMER = 'customer'
    STAFF = 'staff'
    FINANCE = 'finance'
    ROLE_CHOICES = [
        (CUSTOMER, 'Customer'),
        (STAFF, 'Warehouse Staff'),
        (FINANCE, 'Finance'),
    ]
    role = models.CharField(max_length=20, choices=ROLE_CHOICES, default=CUSTOMER)
    phone = models.CharField(max_length=32, blank=True)
    default_address = models.TextField(blank=True)

    @property
    def is_operator(self) -> bool:
        """Staff and finance users act on behalf of customers."""
        return self.role in (self.STAFF, self.FINANCE) or self.is_superuser

    def __str__(self):
        return f"{self.username} ({self.get_role_display()})"
