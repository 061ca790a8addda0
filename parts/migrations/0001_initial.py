import django.db.models.deletion
import django.utils.timezone
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        ('jobs', '0001_initial'),
    ]

    operations = [
        migrations.CreateModel(
            name='PartsSettings',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('default_markup_percent', models.DecimalField(decimal_places=2, default=20, max_digits=7)),
                ('default_lead_time_days', models.PositiveIntegerField(default=3)),
                ('order_cycle_days', models.PositiveIntegerField(default=7)),
                ('usage_window_days', models.PositiveIntegerField(default=90)),
                ('confidence_medium_threshold', models.PositiveIntegerField(default=3)),
                ('confidence_high_threshold', models.PositiveIntegerField(default=10)),
                ('allow_extrapolation', models.BooleanField(default=True)),
                ('max_conflict_retries', models.PositiveIntegerField(default=3)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
            ],
            options={
                'verbose_name': 'parts settings',
                'verbose_name_plural': 'parts settings',
            },
        ),
        migrations.CreateModel(
            name='StorageLocation',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('code', models.CharField(max_length=20, unique=True)),
                ('name', models.CharField(max_length=100)),
                ('location_type', models.CharField(choices=[('VEHICLE', 'Vehicle'), ('BUILDING', 'Building'), ('CONTAINER', 'Container')], max_length=20)),
                ('description', models.TextField(blank=True, default='')),
                ('label_number', models.CharField(blank=True, default='', max_length=50)),
                ('is_active', models.BooleanField(default=True)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('parent', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='children', to='parts.storagelocation')),
            ],
            options={
                'ordering': ['code'],
            },
        ),
        migrations.CreateModel(
            name='Part',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('code', models.CharField(max_length=50, unique=True)),
                ('description', models.CharField(max_length=255)),
                ('category', models.CharField(blank=True, default='', max_length=100)),
                ('brand', models.CharField(blank=True, default='', max_length=100)),
                ('markup_percent', models.DecimalField(decimal_places=2, default=20, max_digits=7)),
                ('min_stock', models.PositiveIntegerField(default=0)),
                ('min_stock_override', models.PositiveIntegerField(blank=True, null=True)),
                ('min_stock_override_reason', models.CharField(blank=True, default='', max_length=255)),
                ('auto_replenish', models.BooleanField(default=False)),
                ('location_notes', models.CharField(blank=True, default='', max_length=255)),
                ('ledger_version', models.PositiveIntegerField(default=0)),
                ('in_stock', models.IntegerField(default=0)),
                ('avg_cost', models.DecimalField(blank=True, decimal_places=4, max_digits=15, null=True)),
                ('sell_price', models.DecimalField(blank=True, decimal_places=2, max_digits=15, null=True)),
                ('times_used', models.PositiveIntegerField(default=0)),
                ('first_used_at', models.DateTimeField(blank=True, null=True)),
                ('last_used_at', models.DateTimeField(blank=True, null=True)),
                ('stocking_score', models.DecimalField(blank=True, decimal_places=2, max_digits=5, null=True)),
                ('is_active', models.BooleanField(default=True)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('storage_location', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='parts', to='parts.storagelocation')),
            ],
            options={
                'ordering': ['code'],
            },
        ),
        migrations.CreateModel(
            name='LedgerTransaction',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('occurred_at', models.DateTimeField(db_index=True, default=django.utils.timezone.now)),
                ('kind', models.CharField(choices=[('PURCHASE', 'Purchase'), ('USED', 'Used'), ('DIRECT_ORDER', 'Direct Order'), ('RETURN_TO_SUPPLIER', 'Return to Supplier'), ('CUSTOMER_RETURN', 'Customer Return'), ('DAMAGED_OR_LOST', 'Damaged/Lost'), ('TRANSFER', 'Transfer'), ('ADJUSTMENT', 'Adjustment')], db_index=True, max_length=30)),
                ('quantity', models.IntegerField()),
                ('unit_cost', models.DecimalField(blank=True, decimal_places=4, max_digits=15, null=True)),
                ('total_cost', models.DecimalField(blank=True, decimal_places=4, max_digits=15, null=True)),
                ('order_ref', models.CharField(blank=True, default='', max_length=100)),
                ('invoice_number', models.CharField(blank=True, default='', max_length=100)),
                ('source', models.CharField(blank=True, default='', max_length=200)),
                ('notes', models.TextField(blank=True, default='')),
                ('actor', models.CharField(default='system', max_length=100)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('from_location', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.PROTECT, related_name='+', to='parts.storagelocation')),
                ('job', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.PROTECT, related_name='part_transactions', to='jobs.job')),
                ('part', models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name='transactions', to='parts.part')),
                ('reverses', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.PROTECT, related_name='reversals', to='parts.ledgertransaction')),
                ('to_location', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.PROTECT, related_name='+', to='parts.storagelocation')),
            ],
            options={
                'ordering': ['occurred_at', 'id'],
                'indexes': [
                    models.Index(fields=['part', 'occurred_at'], name='ledger_part_occurred_idx'),
                    models.Index(fields=['kind', 'occurred_at'], name='ledger_kind_occurred_idx'),
                ],
                'constraints': [
                    models.CheckConstraint(condition=models.Q(('quantity', 0), _negated=True), name='ledger_quantity_nonzero'),
                    models.CheckConstraint(condition=models.Q(models.Q(('kind', 'PURCHASE'), _negated=True), ('unit_cost__isnull', False), _connector='OR'), name='ledger_purchase_has_cost'),
                    models.CheckConstraint(condition=models.Q(('unit_cost__isnull', True), ('unit_cost__gte', 0), _connector='OR'), name='ledger_unit_cost_non_negative'),
                ],
            },
        ),
        migrations.CreateModel(
            name='JobPart',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('description', models.CharField(blank=True, default='', max_length=255)),
                ('quantity', models.PositiveIntegerField()),
                ('unit_cost', models.DecimalField(decimal_places=4, max_digits=15)),
                ('total_cost', models.DecimalField(decimal_places=4, max_digits=15)),
                ('markup_percent', models.DecimalField(decimal_places=2, max_digits=7)),
                ('sell_price', models.DecimalField(decimal_places=2, max_digits=15)),
                ('source', models.CharField(choices=[('STOCK', 'Stock'), ('DIRECT_ORDER', 'Direct Order')], default='STOCK', max_length=20)),
                ('notes', models.TextField(blank=True, default='')),
                ('created_by', models.CharField(default='system', max_length=100)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('job', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='parts', to='jobs.job')),
                ('part', models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name='job_parts', to='parts.part')),
                ('transaction', models.OneToOneField(blank=True, null=True, on_delete=django.db.models.deletion.PROTECT, related_name='job_part', to='parts.ledgertransaction')),
            ],
            options={
                'ordering': ['created_at', 'id'],
                'constraints': [
                    models.CheckConstraint(condition=models.Q(('quantity__gt', 0)), name='job_part_quantity_positive'),
                    models.CheckConstraint(condition=models.Q(models.Q(('source', 'STOCK'), ('transaction__isnull', False)), models.Q(('source', 'DIRECT_ORDER'), ('transaction__isnull', True)), _connector='OR'), name='job_part_source_matches_transaction'),
                ],
            },
        ),
    ]
