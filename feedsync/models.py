from django.db import models


class Shop(models.Model):
    class SyncStatus(models.TextChoices):
        PENDING = 'PENDING'
        SYNCING = 'SYNCING'
        COMPLETED = 'COMPLETED'
        FAILED = 'FAILED'

    class FeedStatus(models.TextChoices):
        PENDING = 'PENDING'
        COMPLETED = 'COMPLETED'
        FAILED = 'FAILED'

    name = models.CharField(max_length=200, blank=True)
    store_url = models.URLField(blank=True)
    consumer_key = models.CharField(max_length=200, blank=True)
    consumer_secret = models.CharField(max_length=200, blank=True)

    currency = models.CharField(max_length=3, default='USD')
    dimension_unit = models.CharField(max_length=10, blank=True)
    weight_unit = models.CharField(max_length=10, blank=True)
    default_enable_search = models.BooleanField(default=True)
    default_enable_checkout = models.BooleanField(default=False)

    seller_name = models.CharField(max_length=70, blank=True)
    seller_url = models.URLField(blank=True)
    seller_privacy_policy = models.URLField(blank=True)
    seller_tos = models.URLField(blank=True)
    return_policy = models.URLField(blank=True)
    return_window = models.PositiveIntegerField(null=True, blank=True)

    # output attribute -> raw payload path, or "shop.<field>"
    field_mappings = models.JSONField(default=dict, blank=True)
    field_mappings_updated_at = models.DateTimeField(null=True, blank=True)
    settings_updated_at = models.DateTimeField(null=True, blank=True)

    sync_enabled = models.BooleanField(default=True)
    sync_status = models.CharField(max_length=16, choices=SyncStatus.choices, default=SyncStatus.PENDING)
    last_sync_at = models.DateTimeField(null=True, blank=True)
    feed_status = models.CharField(max_length=16, choices=FeedStatus.choices, default=FeedStatus.PENDING)
    last_feed_at = models.DateTimeField(null=True, blank=True)
    needs_reselection = models.BooleanField(default=False)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self):
        return self.name or f"shop {self.pk}"

    def has_credentials(self) -> bool:
        return bool(self.consumer_key and self.consumer_secret)

    def mark_needs_reselection(self):
        """Plan downgrade: feeds stay paused until the merchant re-selects items."""
        self.needs_reselection = True
        self.save(update_fields=['needs_reselection', 'updated_at'])

    def clear_needs_reselection(self):
        self.needs_reselection = False
        self.save(update_fields=['needs_reselection', 'updated_at'])

    def set_sync_status(self, status, synced_at=None):
        self.sync_status = status
        fields = ['sync_status', 'updated_at']
        if synced_at is not None:
            self.last_sync_at = synced_at
            fields.append('last_sync_at')
        self.save(update_fields=fields)


class Product(models.Model):
    class SyncState(models.TextChoices):
        DISCOVERED = 'discovered'
        SYNCED = 'synced'
        ERROR = 'error'

    class ProductType(models.TextChoices):
        SIMPLE = 'simple'
        VARIABLE = 'variable'
        VARIATION = 'variation'

    shop = models.ForeignKey(Shop, on_delete=models.CASCADE, related_name='products')
    external_id = models.CharField(max_length=64)
    parent_external_id = models.CharField(max_length=64, null=True, blank=True, db_index=True)
    product_type = models.CharField(max_length=16, choices=ProductType.choices, default=ProductType.SIMPLE)
    title = models.CharField(max_length=500, blank=True)

    raw_payload = models.JSONField(null=True, blank=True)
    checksum = models.CharField(max_length=64, blank=True)
    derived_attributes = models.JSONField(default=dict, blank=True)
    overrides = models.JSONField(default=dict, blank=True)

    selected = models.BooleanField(default=False)
    sync_state = models.CharField(max_length=16, choices=SyncState.choices, default=SyncState.DISCOVERED)
    valid = models.BooleanField(default=False)
    validation_errors = models.JSONField(default=list, blank=True)
    feed_enable_search = models.BooleanField(default=True)
    feed_enable_checkout = models.BooleanField(default=False)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        constraints = [
            models.UniqueConstraint(fields=['shop', 'external_id'], name='unique_shop_external_id'),
        ]

    def __str__(self):
        return f"{self.external_id} ({self.sync_state})"


class FeedSnapshot(models.Model):
    shop = models.ForeignKey(Shop, on_delete=models.CASCADE, related_name='feed_snapshots')
    generated_at = models.DateTimeField(db_index=True)
    item_count = models.PositiveIntegerField(default=0)
    payload = models.JSONField(default=dict)
    storage_key = models.CharField(max_length=300)
    storage_url = models.URLField(max_length=500, blank=True)
    size_bytes = models.PositiveIntegerField(default=0)

    class Meta:
        ordering = ['-generated_at']
        get_latest_by = 'generated_at'

    def __str__(self):
        return f"{self.storage_key} ({self.item_count} items)"
