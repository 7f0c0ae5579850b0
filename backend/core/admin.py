from django.contrib import admin

from .models import ActivityLog, Notification, SystemSetting


class ReadOnlyAdmin(admin.ModelAdmin):
    def has_add_permission(self, request):
        return False

    def has_change_permission(self, request, obj=None):
        return False

    def has_delete_permission(self, request, obj=None):
        return False


@admin.register(SystemSetting)
class SystemSettingAdmin(admin.ModelAdmin):
    list_display = ("key", "description", "updated_at")
    search_fields = ("key",)


@admin.register(ActivityLog)
class ActivityLogAdmin(ReadOnlyAdmin):
    list_display = ("created_at", "action", "target_id", "actor_email")
    list_filter = ("action",)
    search_fields = ("target_id", "actor_email", "details")


@admin.register(Notification)
class NotificationAdmin(admin.ModelAdmin):
    list_display = ("created_at", "user", "category", "title", "is_read")
    list_filter = ("category", "is_read")
    search_fields = ("title", "user__username", "user__email")
