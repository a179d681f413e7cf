#!/usr/bin/env python3
"""
Example: Post a signed ITN to a local receiver.

Useful for exercising the receiver's signature and amount checks. The
origin and confirmation stages will reject it unless the receiver is
configured to trust the local host.

Usage:
    python simulate_itn.py SuperUnique1 200.00 --passphrase jt7NOE43FZPn
"""

import argparse
import asyncio

import aiohttp

from payfast_itn.services.signer import Signer


async def simulate_itn(url, payment_id, amount, passphrase, status):
    fields = {
        'm_payment_id': payment_id,
        'pf_payment_id': '1089250',
        'payment_status': status,
        'item_name': 'Simulated order',
        'amount_gross': f"{amount:.2f}",
        'merchant_id': '10000100',
    }
    fields['signature'] = Signer(passphrase).expected_signature(fields)

    print(f"Posting ITN for {payment_id} ({amount:.2f}, {status}) to {url}")
    async with aiohttp.ClientSession() as session:
        async with session.post(
            url,
            data=fields,
            headers={'Referer': 'https://sandbox.payfast.co.za/'}
        ) as response:
            print(f"Receiver answered {response.status}")


def main():
    parser = argparse.ArgumentParser(description='Simulate a Payfast ITN')
    parser.add_argument('payment_id')
    parser.add_argument('amount', type=float)
    parser.add_argument('--passphrase', default=None)
    parser.add_argument('--status', default='COMPLETE')
    parser.add_argument('--url', default='http://localhost:8080/itn')
    args = parser.parse_args()

    asyncio.run(simulate_itn(
        args.url, args.payment_id, args.amount, args.passphrase, args.status
    ))


if __name__ == '__main__':
    main()
