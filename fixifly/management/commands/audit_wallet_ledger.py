# fixifly/management/commands/audit_wallet_ledger.py

from decimal import Decimal

from django.core.management.base import BaseCommand

from fixifly.models import TXN_WITHDRAWAL, VendorWallet, WalletTransaction, WithdrawalRequest
from fixifly.services.ledger import recompute_balance


class Command(BaseCommand):
    help = (
        'Check every wallet against its ledger: the balance must equal the sum '
        'of postings, each balance_after must extend the running total, and every '
        'approved withdrawal request must match exactly one withdrawal posting.'
    )

    def add_arguments(self, parser):
        parser.add_argument(
            '--vendor',
            type=str,
            help='Audit a single vendor id (e.g. FXV0001)',
        )

    def handle(self, *args, **options):
        wallets = VendorWallet.objects.select_related('vendor').order_by('vendor__vendor_id')
        if options.get('vendor'):
            wallets = wallets.filter(vendor__vendor_id=options['vendor'])

        problems = 0
        for wallet in wallets:
            problems += self._audit_wallet(wallet)

        problems += self._audit_withdrawals(options.get('vendor'))

        if problems:
            self.stdout.write(self.style.ERROR(f'{problems} problem(s) found.'))
        else:
            self.stdout.write(self.style.SUCCESS(f'All {wallets.count()} wallet(s) consistent.'))

    def _audit_withdrawals(self, vendor_id=None):
        """Approved requests and withdrawal postings must pair up one to one."""
        requests = WithdrawalRequest.objects.filter(status='approved', transaction__isnull=True)
        postings = WalletTransaction.objects.filter(txn_type=TXN_WITHDRAWAL, withdrawal_request__isnull=True)
        if vendor_id:
            requests = requests.filter(vendor__vendor_id=vendor_id)
            postings = postings.filter(wallet__vendor__vendor_id=vendor_id)

        problems = 0
        for wr in requests.select_related('vendor').order_by('id'):
            problems += 1
            self.stdout.write(self.style.ERROR(
                f'  ✗ {wr.vendor.vendor_id}: withdrawal request #{wr.id} approved without a posting'
            ))
        for txn in postings.select_related('wallet__vendor').order_by('id'):
            problems += 1
            self.stdout.write(self.style.ERROR(
                f'  ✗ {txn.wallet.vendor.vendor_id}: withdrawal {txn.transaction_id} has no approved request'
            ))
        return problems

    def _audit_wallet(self, wallet):
        vendor_id = wallet.vendor.vendor_id
        problems = 0

        ledger_total = recompute_balance(wallet)
        if ledger_total != wallet.current_balance:
            problems += 1
            self.stdout.write(self.style.ERROR(
                f'  ✗ {vendor_id}: balance {wallet.current_balance} != ledger sum {ledger_total}'
            ))

        running = Decimal('0.00')
        for txn in wallet.transactions.order_by('id'):
            running += txn.amount
            if txn.balance_after != running:
                problems += 1
                self.stdout.write(self.style.ERROR(
                    f'  ✗ {vendor_id}: {txn.transaction_id} balance_after {txn.balance_after}, expected {running}'
                ))
                break

        return problems
