from django.contrib import admin, messages

from core.exceptions import FreightError
from wallet.models import Transaction, Wallet
from wallet.services import ledger


@admin.register(Wallet)
class WalletAdmin(admin.ModelAdmin):
    list_display = ("id", "owner", "balance", "updated_at")
    search_fields = ("owner__username", "owner__email")
    readonly_fields = ("balance",)


@admin.register(Transaction)
class TransactionAdmin(admin.ModelAdmin):
    list_display = ("id", "wallet", "type", "amount", "status", "invoice_status", "invoice_ref", "created_at")
    list_filter = ("type", "status", "invoice_status")
    search_fields = ("wallet__owner__username", "description", "invoice_ref")
    readonly_fields = (
        "wallet",
        "amount",
        "type",
        "status",
        "shipment",
        "reviewed_by",
        "reviewed_at",
        "invoice_ref",
        "invoice_status",
        "invoice_error",
        "invoice_attempts",
        "invoice_issued_at",
        "invoice_claimed_at",
        "invoice_voided",
    )
    actions = ["approve_deposits", "reject_deposits"]

    def _review(self, request, queryset, decision):
        for tx in queryset:
            try:
                ledger.review(tx.pk, decision, actor=request.user)
            except FreightError as e:
                messages.warning(request, f"Transaction {tx.pk}: {e}")
            else:
                messages.info(request, f"Transaction {tx.pk}: {'approved' if decision == ledger.APPROVE else 'rejected'}")

    @admin.action(description="Approve selected deposits")
    def approve_deposits(self, request, queryset):
        self._review(request, queryset, ledger.APPROVE)

    @admin.action(description="Reject selected deposits")
    def reject_deposits(self, request, queryset):
        self._review(request, queryset, ledger.REJECT)
