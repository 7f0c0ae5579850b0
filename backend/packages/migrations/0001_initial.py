import django.db.models.deletion
from django.conf import settings
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
        ('shipments', '0001_initial'),
    ]

    operations = [
        migrations.CreateModel(
            name='Package',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('tracking_number', models.CharField(max_length=64, unique=True)),
                ('product_name', models.CharField(max_length=200)),
                ('quantity', models.PositiveIntegerField(default=1)),
                ('note', models.TextField(blank=True)),
                ('computed_fee', models.PositiveIntegerField(default=0)),
                ('status', models.CharField(choices=[('PENDING', 'Pending arrival'), ('ARRIVED', 'Arrived at warehouse'), ('IN_SHIPMENT', 'In shipment'), ('COMPLETED', 'Completed')], default='PENDING', max_length=16)),
                ('rate_table_version', models.PositiveIntegerField(blank=True, null=True)),
                ('measured_at', models.DateTimeField(blank=True, null=True)),
                ('photos', models.JSONField(blank=True, default=list)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('owner', models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name='packages', to=settings.AUTH_USER_MODEL)),
                ('shipment', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.PROTECT, related_name='packages', to='shipments.shipment')),
            ],
            options={
                'ordering': ['-created_at', '-id'],
                'indexes': [models.Index(fields=['owner', 'status'], name='package_owner_status_idx')],
                'constraints': [
                    models.CheckConstraint(
                        condition=(
                            models.Q(status='IN_SHIPMENT', shipment__isnull=False)
                            | models.Q(status__in=['PENDING', 'ARRIVED'], shipment__isnull=True)
                            | models.Q(status='COMPLETED')
                        ),
                        name='package_shipment_matches_status',
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name='PackageBox',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('position', models.PositiveIntegerField(default=0)),
                ('name', models.CharField(blank=True, max_length=100)),
                ('category_key', models.CharField(blank=True, max_length=100)),
                ('weight_kg', models.DecimalField(blank=True, decimal_places=3, max_digits=10, null=True)),
                ('length_cm', models.DecimalField(blank=True, decimal_places=2, max_digits=10, null=True)),
                ('width_cm', models.DecimalField(blank=True, decimal_places=2, max_digits=10, null=True)),
                ('height_cm', models.DecimalField(blank=True, decimal_places=2, max_digits=10, null=True)),
                ('cbm', models.DecimalField(blank=True, decimal_places=4, max_digits=10, null=True)),
                ('volumetric_units', models.PositiveIntegerField(default=0)),
                ('fee', models.PositiveIntegerField(default=0)),
                ('is_oversized', models.BooleanField(default=False)),
                ('is_overweight', models.BooleanField(default=False)),
                ('package', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='boxes', to='packages.package')),
            ],
            options={
                'ordering': ['package_id', 'position'],
            },
        ),
    ]
