import time

from django.core.management.base import BaseCommand, CommandError

from payments.exceptions import GatewayError, PersistenceError
from payments.paystack import PaystackClient
from payments.webhooks import CREATED, DUPLICATE, handle_charge_success


class Command(BaseCommand):
    help = "Create bookings for successful Paystack transactions whose webhook was never applied"

    def add_arguments(self, parser):
        parser.add_argument("--reference", help="Verify and reconcile a single transaction reference")
        parser.add_argument("--pages", type=int, default=1)
        parser.add_argument("--per-page", type=int, default=50)
        parser.add_argument("--sleep", type=float, default=0.0)

    def handle(self, *args, **opts):
        client = PaystackClient.from_settings()

        if opts["reference"]:
            try:
                transaction = client.verify(opts["reference"])
            except GatewayError as e:
                raise CommandError(f"{opts['reference']}: {e}")
            transactions = [transaction]
        else:
            transactions = []
            for page in range(1, opts["pages"] + 1):
                try:
                    batch, meta = client.list_transactions(page=page, per_page=opts["per_page"], status="success")
                except GatewayError as e:
                    raise CommandError(f"page {page}: {e}")
                transactions.extend(batch)
                if page >= int(meta.get("pageCount") or page):
                    break
                time.sleep(opts["sleep"])

        created = 0
        for transaction in transactions:
            reference = transaction.get("reference")
            if transaction.get("status") != "success":
                self.stdout.write(f"{reference}: status={transaction.get('status') or 'unknown'}")
                continue
            try:
                booking, action = handle_charge_success(transaction)
            except PersistenceError as e:
                self.stdout.write(self.style.ERROR(f"{reference}: {e}"))
                continue

            if action == CREATED:
                created += 1
                self.stdout.write(self.style.SUCCESS(f"{reference} -> {booking.order_number}"))
            elif action == DUPLICATE:
                self.stdout.write(f"{reference}: already booked as {booking.order_number}")
            else:
                self.stdout.write(self.style.WARNING(f"{reference}: skipped, no usable booking draft"))

        self.stdout.write(self.style.SUCCESS(f"Checked {len(transactions)}, created {created} bookings."))
