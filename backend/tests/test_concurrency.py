"""
Threaded checks against a file-backed SQLite database.

Each worker gets its own app context (and therefore its own session), the
way concurrent requests would.
"""

import os
import tempfile
import threading
import unittest

from saleflow import create_app
from saleflow.extensions import db
from saleflow.models import Product, Sale, StockMovement, User
from saleflow.services import inventory_service, payment_service, refund_service, sales_service
from saleflow.services.inventory_service import InsufficientStockError
from saleflow.services.sale_state import SaleStateError
from saleflow.validation import RefundItemInput, SaleItemInput


class ConcurrencyTests(unittest.TestCase):
    def setUp(self):
        self.tmpdir = tempfile.TemporaryDirectory()
        db_path = os.path.join(self.tmpdir.name, "concurrency.db")
        self.app = create_app({
            "TESTING": True,
            "SQLALCHEMY_DATABASE_URI": f"sqlite:///{db_path}",
            "SQLALCHEMY_ENGINE_OPTIONS": {"connect_args": {"timeout": 15}},
            "LOG_LEVEL": "ERROR",
        })

        with self.app.app_context():
            db.drop_all()
            db.create_all()

            user = User(username="concurrent_user", name="Concurrent User", role="operator")
            db.session.add(user)
            db.session.commit()
            self.user_id = user.id

            self.last_unit_id = inventory_service.create_product(
                sku="LAST-1", name="Last Unit", price_cents=1000, initial_stock=1,
            ).id
            self.untracked_id = inventory_service.create_product(
                sku="GIFT-1", name="Gift Wrap", price_cents=200, track_inventory=False,
            ).id

    def tearDown(self):
        with self.app.app_context():
            db.session.remove()
            db.drop_all()
            db.session.remove()
            db.engine.dispose()
        self.tmpdir.cleanup()

    def _run(self, targets):
        results = []
        lock = threading.Lock()

        def wrap(target):
            def worker():
                with self.app.app_context():
                    try:
                        outcome = target()
                        with lock:
                            results.append(outcome)
                    except Exception as exc:
                        with lock:
                            results.append(exc)
                    finally:
                        db.session.remove()
            return worker

        threads = [threading.Thread(target=wrap(t)) for t in targets]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        return results

    def test_last_unit_sold_once(self):
        def buy():
            sale = sales_service.create_sale(
                self.user_id, [SaleItemInput(product_id=self.last_unit_id, quantity=1)]
            )
            return sale.receipt_number

        results = self._run([buy, buy])

        receipts = [r for r in results if isinstance(r, str)]
        failures = [r for r in results if isinstance(r, Exception)]
        self.assertEqual(len(receipts), 1)
        self.assertEqual(len(failures), 1)
        self.assertIsInstance(failures[0], InsufficientStockError)

        with self.app.app_context():
            self.assertEqual(db.session.get(Product, self.last_unit_id).current_stock, 0)
            self.assertEqual(db.session.query(Sale).count(), 1)
            movements = db.session.query(StockMovement).filter_by(product_id=self.last_unit_id).all()
            self.assertEqual(sum(m.quantity_delta for m in movements), 0)

    def test_receipt_numbers_are_unique(self):
        def buy():
            sale = sales_service.create_sale(
                self.user_id, [SaleItemInput(product_id=self.untracked_id, quantity=1)]
            )
            return sale.receipt_number

        results = self._run([buy] * 8)

        self.assertFalse([r for r in results if isinstance(r, Exception)])
        self.assertEqual(len(set(results)), 8)

    def test_concurrent_refunds_respect_quantity(self):
        with self.app.app_context():
            sale = sales_service.create_sale(
                self.user_id, [SaleItemInput(product_id=self.untracked_id, quantity=1)]
            )
            payment_service.record_payment(sale.id, self.user_id, "cash", sale.total_cents)
            sale_id = sale.id
            line_id = sale.items[0].id

        def refund():
            refund_service.refund_sale(sale_id, self.user_id, [RefundItemInput(sale_line_id=line_id, quantity=1)])
            return "refunded"

        results = self._run([refund, refund])

        self.assertEqual(results.count("refunded"), 1)
        errors = [r for r in results if isinstance(r, Exception)]
        self.assertEqual(len(errors), 1)
        self.assertIsInstance(errors[0], SaleStateError)

        with self.app.app_context():
            sale = db.session.get(Sale, sale_id)
            self.assertEqual(sale.total_refunded_cents, 200)
            self.assertEqual(sale.status, "refunded")


if __name__ == "__main__":
    unittest.main()
