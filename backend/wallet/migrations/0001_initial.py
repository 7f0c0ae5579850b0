import django.db.models.deletion
from django.conf import settings
from django.db import migrations, models


INVOICE_STATUS_CHOICES = [
    ('', 'Not invoiced'),
    ('ISSUING', 'Issuing'),
    ('ISSUED', 'Issued'),
    ('FAILED', 'Failed'),
    ('VOID', 'Voided'),
]


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
        ('shipments', '0001_initial'),
    ]

    operations = [
        migrations.CreateModel(
            name='Wallet',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('balance', models.BigIntegerField(default=0)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('owner', models.OneToOneField(on_delete=django.db.models.deletion.PROTECT, related_name='wallet', to=settings.AUTH_USER_MODEL)),
            ],
        ),
        migrations.CreateModel(
            name='Transaction',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('invoice_ref', models.CharField(blank=True, max_length=64, null=True, unique=True)),
                ('invoice_status', models.CharField(blank=True, choices=INVOICE_STATUS_CHOICES, default='', max_length=8)),
                ('invoice_error', models.TextField(blank=True)),
                ('invoice_attempts', models.PositiveIntegerField(default=0)),
                ('invoice_issued_at', models.DateTimeField(blank=True, null=True)),
                ('invoice_claimed_at', models.DateTimeField(blank=True, null=True)),
                ('invoice_voided', models.JSONField(blank=True, default=list)),
                ('amount', models.BigIntegerField()),
                ('type', models.CharField(choices=[('DEPOSIT', 'Deposit'), ('PAYMENT', 'Shipment payment'), ('REFUND', 'Refund'), ('ADJUST', 'Manual adjustment')], max_length=8)),
                ('status', models.CharField(choices=[('PENDING', 'Pending review'), ('COMPLETED', 'Completed'), ('REJECTED', 'Rejected')], default='PENDING', max_length=10)),
                ('description', models.TextField(blank=True)),
                ('proof_ref', models.CharField(blank=True, max_length=255)),
                ('reviewed_at', models.DateTimeField(blank=True, null=True)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('reviewed_by', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='+', to=settings.AUTH_USER_MODEL)),
                ('shipment', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.PROTECT, related_name='wallet_transactions', to='shipments.shipment')),
                ('wallet', models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name='transactions', to='wallet.wallet')),
            ],
            options={
                'ordering': ['-created_at', '-id'],
                'abstract': False,
                'indexes': [models.Index(fields=['wallet', 'status'], name='wallet_tx_wallet_status_idx')],
            },
        ),
    ]
