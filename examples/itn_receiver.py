#!/usr/bin/env python3
"""
Example: ITN receiver for a merchant shop.

Demonstrates how a merchant wires the ITN validator into their own
aiohttp application, looking up the expected amount of each order.

Usage:
    python itn_receiver.py --merchant-id 10000100 --merchant-key 46f0cd694581a \
        --passphrase jt7NOE43FZPn --port 8080

Orders are kept in memory; add one with --order ORDER_ID:AMOUNT.
"""

import argparse
from datetime import datetime

from aiohttp import web

from payfast_itn.api.itn_api import create_app
from payfast_itn.models.credentials import MerchantCredentials
from payfast_itn.services.itn_validator import ITNValidator


def parse_orders(values):
    orders = {}
    for value in values or []:
        order_id, _, amount = value.partition(':')
        orders[order_id] = float(amount)
    return orders


def build_app(args) -> web.Application:
    credentials = MerchantCredentials(
        merchant_id=args.merchant_id,
        merchant_key=args.merchant_key,
        passphrase=args.passphrase,
        sandbox=not args.live
    )
    validator = ITNValidator(credentials)
    orders = parse_orders(args.order)

    async def lookup_amount(notification):
        return orders.get(notification.payment_id)

    app = create_app(validator, amount_lookup=lookup_amount, itn_path=args.path)
    api = app['itn_api']

    async def on_payment(notification):
        print("\n" + "=" * 60)
        print(f"Payment verified at {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}")
        print("=" * 60)
        print(f"Order:   {notification.payment_id}")
        print(f"Payfast: {notification.pf_payment_id}")
        print(f"Status:  {notification.status}")
        print(f"Amount:  {notification.get('amount_gross')}")
        if notification.is_complete:
            print("Order can be fulfilled.")

    async def on_failure(notification, result):
        print("\n" + "-" * 60)
        label = notification.short_id() if notification else 'unparsed request'
        print(f"Notification rejected ({label})")
        print(f"Stage:  {result.stage.value if result.stage else '-'}")
        print(f"Reason: {result.reason.value} [{result.category.value}]")
        if result.detail:
            print(f"Detail: {result.detail}")

    async def close_validator(app):
        await validator.close()

    api.on_payment(on_payment)
    api.on_failure(on_failure)
    app.on_cleanup.append(close_validator)
    return app


def main():
    parser = argparse.ArgumentParser(description='Payfast ITN receiver example')
    parser.add_argument('--merchant-id', required=True)
    parser.add_argument('--merchant-key', required=True)
    parser.add_argument('--passphrase', default=None)
    parser.add_argument('--live', action='store_true', help='Use the live Payfast host')
    parser.add_argument('--path', default='/itn', help='ITN endpoint path')
    parser.add_argument('--port', type=int, default=8080)
    parser.add_argument('--order', action='append', help='ORDER_ID:AMOUNT')
    args = parser.parse_args()

    print(f"Listening for ITNs on http://0.0.0.0:{args.port}{args.path}")
    web.run_app(build_app(args), port=args.port)


if __name__ == '__main__':
    main()
