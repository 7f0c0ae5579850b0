from django.conf import settings
from django.core.serializers.json import DjangoJSONEncoder
from django.db import models


class SystemSetting(models.Model):
    """Key/value configuration stored in the database (e.g. ``rates_config``)."""
    key = models.CharField(max_length=100, unique=True)
    value = models.JSONField(default=dict, encoder=DjangoJSONEncoder)
    description = models.CharField(max_length=255, blank=True)
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self):
        return self.key


class ActivityLog(models.Model):
    actor = models.ForeignKey(
        settings.AUTH_USER_MODEL, null=True, blank=True, on_delete=models.SET_NULL, related_name="activity_logs"
    )
    actor_email = models.CharField(max_length=254, blank=True)
    action = models.CharField(max_length=64)
    target_id = models.CharField(max_length=64, blank=True)
    details = models.TextField(blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["-created_at", "-id"]
        indexes = [
            models.Index(fields=["action"], name="core_activity_action_idx"),
            models.Index(fields=["target_id"], name="core_activity_target_idx"),
        ]

    def __str__(self):
        return f"{self.action} {self.target_id} by {self.actor_email or 'system'}"


class Notification(models.Model):
    SYSTEM = "SYSTEM"
    PACKAGE = "PACKAGE"
    SHIPMENT = "SHIPMENT"
    WALLET = "WALLET"
    CATEGORY_CHOICES = [
        (SYSTEM, "System"),
        (PACKAGE, "Package"),
        (SHIPMENT, "Shipment"),
        (WALLET, "Wallet"),
    ]

    user = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.CASCADE, related_name="notifications")
    title = models.CharField(max_length=200)
    message = models.TextField()
    category = models.CharField(max_length=16, choices=CATEGORY_CHOICES, default=SYSTEM)
    link = models.CharField(max_length=255, blank=True)
    is_read = models.BooleanField(default=False)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["-created_at", "-id"]

    def __str__(self):
        return f"[{self.category}] {self.title}"
