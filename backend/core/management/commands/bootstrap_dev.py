# backend/core/management/commands/bootstrap_dev.py
import os

from django.contrib.auth import get_user_model
from django.core.management.base import BaseCommand

from pricing.services.rate_table import load_rate_table


class Command(BaseCommand):
    help = "Idempotently ensure a dev operator account exists and report the active rate table."

    def handle(self, *args, **opts):
        User = get_user_model()
        username = os.getenv("DEV_ADMIN_USER", "operator")
        email = os.getenv("DEV_ADMIN_EMAIL", "operator@example.com")
        password = os.getenv("DEV_ADMIN_PASS", "ChangeMe123!")

        user, created = User.objects.get_or_create(
            username=username,
            defaults={"email": email, "is_staff": True, "is_superuser": True, "role": User.STAFF},
        )
        if created:
            user.set_password(password)
            user.save()
            self.stdout.write(self.style.SUCCESS(f"Created operator '{username}'"))
        else:
            self.stdout.write(f"Operator '{username}' already exists")

        table = load_rate_table()
        categories = ", ".join(sorted(table.categories)) or "(none)"
        self.stdout.write(f"Rate table v{table.version}: categories {categories}")
