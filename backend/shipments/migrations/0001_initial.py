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
    ]

    operations = [
        migrations.CreateModel(
            name='Shipment',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('invoice_ref', models.CharField(blank=True, max_length=64, null=True, unique=True)),
                ('invoice_status', models.CharField(blank=True, choices=INVOICE_STATUS_CHOICES, default='', max_length=8)),
                ('invoice_error', models.TextField(blank=True)),
                ('invoice_attempts', models.PositiveIntegerField(default=0)),
                ('invoice_issued_at', models.DateTimeField(blank=True, null=True)),
                ('invoice_claimed_at', models.DateTimeField(blank=True, null=True)),
                ('invoice_voided', models.JSONField(blank=True, default=list)),
                ('status', models.CharField(choices=[('PENDING_PAYMENT', 'Pending payment'), ('PROCESSING', 'Processing'), ('SHIPPED', 'Shipped'), ('COMPLETED', 'Completed'), ('CANCELLED', 'Cancelled')], default='PENDING_PAYMENT', max_length=16)),
                ('recipient_name', models.CharField(max_length=100)),
                ('phone', models.CharField(max_length=32)),
                ('shipping_address', models.TextField()),
                ('note', models.TextField(blank=True)),
                ('base_fee_raw', models.PositiveIntegerField(default=0)),
                ('base_fee', models.PositiveIntegerField(default=0)),
                ('minimum_charge_applied', models.BooleanField(default=False)),
                ('oversized_fee', models.PositiveIntegerField(default=0)),
                ('overweight_fee', models.PositiveIntegerField(default=0)),
                ('remote_area_rate', models.DecimalField(decimal_places=2, default=0, max_digits=10)),
                ('remote_area_fee', models.PositiveIntegerField(default=0)),
                ('total_volumetric_units', models.PositiveIntegerField(default=0)),
                ('manual_adjustment', models.IntegerField(default=0)),
                ('total_fee', models.PositiveIntegerField(default=0)),
                ('rate_table_version', models.PositiveIntegerField(default=0)),
                ('payment_method', models.CharField(blank=True, choices=[('', 'Not paid'), ('TRANSFER', 'Bank transfer'), ('WALLET', 'Wallet')], default='', max_length=16)),
                ('payment_proof', models.CharField(blank=True, max_length=255)),
                ('domestic_tracking_number', models.CharField(blank=True, max_length=64)),
                ('cancel_reason', models.TextField(blank=True)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('cancelled_at', models.DateTimeField(blank=True, null=True)),
                ('owner', models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name='shipments', to=settings.AUTH_USER_MODEL)),
            ],
            options={
                'ordering': ['-created_at', '-id'],
                'abstract': False,
                'indexes': [models.Index(fields=['owner', 'status'], name='shipment_owner_status_idx')],
                'constraints': [
                    models.CheckConstraint(
                        condition=models.Q(total_fee=models.F('base_fee') + models.F('oversized_fee') + models.F('overweight_fee') + models.F('remote_area_fee') + models.F('manual_adjustment')),
                        name='shipment_total_is_sum_of_parts',
                    ),
                ],
            },
        ),
    ]
