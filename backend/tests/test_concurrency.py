# Overview: Threaded tests against a file-backed SQLite database.

"""
Concurrent invoice creation and stock deduction.

Each worker runs in its own app context (own session, own connection), so
these exercise the real locking path: BEGIN IMMEDIATE on SQLite plus the
guarded stock UPDATE and the document sequence counter.
"""
import os
import tempfile
import threading
import unittest
from decimal import Decimal

from billing import create_app
from billing.extensions import db
from billing.models import Customer, Invoice, Product, StockHistory
from billing.services import invoice_service, stock_service
from billing.services.stock_service import InsufficientStockError


class ConcurrencyTests(unittest.TestCase):
    WORKERS = 10

    def setUp(self):
        self.tmpdir = tempfile.TemporaryDirectory()
        db_path = os.path.join(self.tmpdir.name, "concurrency.db")
        self.app = create_app({
            "TESTING": True,
            "SQLALCHEMY_DATABASE_URI": f"sqlite:///{db_path}",
            "NOTIFICATIONS_ASYNC": False,
            "STOCK_SHORTFALL_POLICY": "warn",
            "EMAIL_USER": None,
            "WHATSAPP_ACCESS_TOKEN": None,
            "ADMIN_EMAIL": None,
            "ADMIN_PHONE": None,
        })

        with self.app.app_context():
            db.drop_all()
            db.create_all()

            customer = Customer(name="Concurrent Buyer", customer_type="b2c")
            product = Product(
                name="Concurrent Product",
                price=Decimal("100.00"),
                gst_rate=Decimal("18.00"),
                stock_quantity=5,
                low_stock_threshold=0,
            )
            db.session.add_all([customer, product])
            db.session.commit()
            self.customer_id = customer.id
            self.product_id = product.id

    def tearDown(self):
        with self.app.app_context():
            db.session.remove()
            db.drop_all()
            db.session.remove()
            db.engine.dispose()
        self.tmpdir.cleanup()

    def _run_workers(self, target):
        results = []
        errors = []
        lock = threading.Lock()

        def worker():
            with self.app.app_context():
                try:
                    outcome = target()
                    with lock:
                        results.append(outcome)
                except Exception as exc:
                    with lock:
                        errors.append(exc)
                finally:
                    db.session.remove()

        threads = [threading.Thread(target=worker) for _ in range(self.WORKERS)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        return results, errors

    def test_concurrent_invoices_get_distinct_numbers(self):
        def create():
            result = invoice_service.create_invoice(
                customer_id=self.customer_id,
                gst_type="cgst_sgst",
                items=[{"product_id": self.product_id, "quantity": 1}],
            )
            return result.invoice.invoice_number, len(result.warnings)

        results, errors = self._run_workers(create)

        self.assertEqual(errors, [])
        numbers = [number for number, _ in results]
        self.assertEqual(len(numbers), self.WORKERS)
        self.assertEqual(len(set(numbers)), self.WORKERS)
        self.assertEqual(sorted(numbers), [f"INV-{n:06d}" for n in range(1, self.WORKERS + 1)])
        # Only 5 units existed: the rest are reported shortfalls
        self.assertEqual(sum(warned for _, warned in results), self.WORKERS - 5)

        with self.app.app_context():
            product = db.session.get(Product, self.product_id)
            self.assertEqual(product.stock_quantity, 0)
            self.assertEqual(db.session.query(Invoice).count(), self.WORKERS)
            self.assertEqual(
                db.session.query(StockHistory).filter_by(product_id=self.product_id).count(), 5
            )
            self.assertEqual(stock_service.verify_history(self.product_id), [])

    def test_concurrent_deductions_never_oversell(self):
        def deduct():
            return stock_service.deduct_stock(self.product_id, 1).balance_after

        results, errors = self._run_workers(deduct)

        self.assertEqual(len(results), 5)
        self.assertEqual(sorted(results), [0, 1, 2, 3, 4])
        self.assertEqual(len(errors), self.WORKERS - 5)
        self.assertTrue(all(isinstance(e, InsufficientStockError) for e in errors))

        with self.app.app_context():
            product = db.session.get(Product, self.product_id)
            self.assertEqual(product.stock_quantity, 0)
            self.assertEqual(stock_service.verify_history(self.product_id), [])


if __name__ == "__main__":
    unittest.main()
