# marketplace/cli.py
import click

from .errors import CheckoutError
from .services.coupon_service import create_coupon_from_payload


@click.command("create-coupon")
@click.option("--code", required=True)
@click.option("--type", "discount_type", type=click.Choice(["flat", "percentage"]), default="flat")
@click.option("--value", required=True)
@click.option("--min-order", default="0")
@click.option("--max-discount", default=None)
@click.option("--usage-limit", default=0, type=int)
@click.option("--valid-from", required=True, help="ISO-8601")
@click.option("--valid-until", required=True, help="ISO-8601")
@click.option("--use", type=click.Choice(["one", "many"]), default="one")
@click.option("--store-id", default=None, type=int)
@click.option("--owner-id", default=0, type=int)
def create_coupon(code, discount_type, value, min_order, max_discount, usage_limit,
                  valid_from, valid_until, use, store_id, owner_id):
    try:
        c = create_coupon_from_payload({
            "code": code,
            "discount_type": discount_type,
            "discount_value": value,
            "min_order_value": min_order,
            "max_discount_amount": max_discount,
            "usage_limit": usage_limit,
            "valid_from": valid_from,
            "valid_until": valid_until,
            "use": use,
            "store_id": store_id,
        }, owner_type="admin", owner_id=owner_id)
    except CheckoutError as e:
        raise click.ClickException(e.message)
    click.echo(f"Coupon created: {c.id} {c.code}")


def register_cli(app):
    app.cli.add_command(create_coupon)
