from tortoise import fields, models


class Inventory(models.Model):
    id = fields.IntField(primary_key=True)
    # One-to-one link to ensure a single inventory record per product
    product = fields.OneToOneField("models.Product", related_name="inventory")
    available_qty = fields.IntField(default=0) # ERP InStock - Committed
    updated_at = fields.DatetimeField(auto_now=True)

    class Meta:
        table = "inventory"
