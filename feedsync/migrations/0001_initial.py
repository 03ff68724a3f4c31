import django.db.models.deletion
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name='Shop',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('name', models.CharField(blank=True, max_length=200)),
                ('store_url', models.URLField(blank=True)),
                ('consumer_key', models.CharField(blank=True, max_length=200)),
                ('consumer_secret', models.CharField(blank=True, max_length=200)),
                ('currency', models.CharField(default='USD', max_length=3)),
                ('dimension_unit', models.CharField(blank=True, max_length=10)),
                ('weight_unit', models.CharField(blank=True, max_length=10)),
                ('default_enable_search', models.BooleanField(default=True)),
                ('default_enable_checkout', models.BooleanField(default=False)),
                ('seller_name', models.CharField(blank=True, max_length=70)),
                ('seller_url', models.URLField(blank=True)),
                ('seller_privacy_policy', models.URLField(blank=True)),
                ('seller_tos', models.URLField(blank=True)),
                ('return_policy', models.URLField(blank=True)),
                ('return_window', models.PositiveIntegerField(blank=True, null=True)),
                ('field_mappings', models.JSONField(blank=True, default=dict)),
                ('field_mappings_updated_at', models.DateTimeField(blank=True, null=True)),
                ('settings_updated_at', models.DateTimeField(blank=True, null=True)),
                ('sync_enabled', models.BooleanField(default=True)),
                ('sync_status', models.CharField(choices=[('PENDING', 'Pending'), ('SYNCING', 'Syncing'), ('COMPLETED', 'Completed'), ('FAILED', 'Failed')], default='PENDING', max_length=16)),
                ('last_sync_at', models.DateTimeField(blank=True, null=True)),
                ('feed_status', models.CharField(choices=[('PENDING', 'Pending'), ('COMPLETED', 'Completed'), ('FAILED', 'Failed')], default='PENDING', max_length=16)),
                ('last_feed_at', models.DateTimeField(blank=True, null=True)),
                ('needs_reselection', models.BooleanField(default=False)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
            ],
        ),
        migrations.CreateModel(
            name='Product',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('external_id', models.CharField(max_length=64)),
                ('parent_external_id', models.CharField(blank=True, db_index=True, max_length=64, null=True)),
                ('product_type', models.CharField(choices=[('simple', 'Simple'), ('variable', 'Variable'), ('variation', 'Variation')], default='simple', max_length=16)),
                ('title', models.CharField(blank=True, max_length=500)),
                ('raw_payload', models.JSONField(blank=True, null=True)),
                ('checksum', models.CharField(blank=True, max_length=64)),
                ('derived_attributes', models.JSONField(blank=True, default=dict)),
                ('overrides', models.JSONField(blank=True, default=dict)),
                ('selected', models.BooleanField(default=False)),
                ('sync_state', models.CharField(choices=[('discovered', 'Discovered'), ('synced', 'Synced'), ('error', 'Error')], default='discovered', max_length=16)),
                ('valid', models.BooleanField(default=False)),
                ('validation_errors', models.JSONField(blank=True, default=list)),
                ('feed_enable_search', models.BooleanField(default=True)),
                ('feed_enable_checkout', models.BooleanField(default=False)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('shop', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='products', to='feedsync.shop')),
            ],
        ),
        migrations.AddConstraint(
            model_name='product',
            constraint=models.UniqueConstraint(fields=('shop', 'external_id'), name='unique_shop_external_id'),
        ),
        migrations.CreateModel(
            name='FeedSnapshot',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('generated_at', models.DateTimeField(db_index=True)),
                ('item_count', models.PositiveIntegerField(default=0)),
                ('payload', models.JSONField(default=dict)),
                ('storage_key', models.CharField(max_length=300)),
                ('storage_url', models.URLField(blank=True, max_length=500)),
                ('size_bytes', models.PositiveIntegerField(default=0)),
                ('shop', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='feed_snapshots', to='feedsync.shop')),
            ],
            options={
                'ordering': ['-generated_at'],
                'get_latest_by': 'generated_at',
            },
        ),
    ]
