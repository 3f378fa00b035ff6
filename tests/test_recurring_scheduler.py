import unittest
from datetime import date
from unittest.mock import patch

from sqlalchemy import select

from caresupply.core.exceptions import ValidationError
from caresupply.models import Order, Patient, Product, RecurringOrderExecution
from caresupply.services import recurring_scheduler, template_store
from caresupply.services.order_service import create_order
from caresupply.services.recurring_scheduler import (
    build_notification_message,
    run_daily_check,
    run_notification_check,
)
from tests.support import (
    add_institution,
    add_patient,
    add_product,
    add_template,
    add_user,
    make_session_factory,
)

EXECUTION_DAY = date(2026, 3, 5)
NOTIFICATION_DAY = date(2026, 3, 2)


class RecurringSchedulerTest(unittest.TestCase):
    def setUp(self):
        self.engine, self.Session = make_session_factory()
        with self.Session() as db:
            institution = add_institution(db)
            for first_name in ("Ada", "Alan", "Grace"):
                add_patient(db, institution, first_name=first_name)
            admin = add_user(db, institution)
            gloves = add_product(db, name="Gloves", price="2.00", stock=100)
            template = add_template(
                db,
                institution,
                [(gloves, 2)],
                execution_day=5,
                delivery_day=20,
                notification_days_before=3,
                created_by=admin,
            )
            db.commit()
            self.institution_id = institution.id
            self.admin_id = admin.id
            self.gloves_id = gloves.id
            self.template_id = template.id

    def tearDown(self):
        self.engine.dispose()

    def _orders(self):
        with self.Session() as db:
            return list(db.execute(select(Order).order_by(Order.id)).scalars().all())

    def _executions(self):
        with self.Session() as db:
            return list(db.execute(select(RecurringOrderExecution)).scalars().all())

    def test_execution_day_creates_one_order_per_active_patient(self):
        stats = run_daily_check(today=EXECUTION_DAY, session_factory=self.Session)

        self.assertEqual(stats["templates_found"], 1)
        self.assertEqual(stats["templates_processed"], 1)
        self.assertEqual(stats["orders_created"], 3)

        orders = self._orders()
        self.assertEqual(len(orders), 3)
        for order in orders:
            self.assertEqual(order.scheduled_date, date(2026, 3, 20))
            self.assertTrue(order.is_recurring)
            self.assertEqual(order.status, "pending")
            self.assertEqual(order.created_by_user_id, self.admin_id)

        executions = self._executions()
        self.assertEqual(len(executions), 1)
        execution = executions[0]
        self.assertTrue(execution.orders_created)
        self.assertTrue(execution.is_approved)
        self.assertEqual(sorted(execution.created_order_ids), [order.id for order in orders])

    def test_running_twice_creates_orders_once(self):
        run_daily_check(today=EXECUTION_DAY, session_factory=self.Session)
        stats = run_daily_check(today=EXECUTION_DAY, session_factory=self.Session)

        self.assertEqual(stats["templates_skipped"], 1)
        self.assertEqual(stats["orders_created"], 0)
        self.assertEqual(len(self._orders()), 3)
        self.assertEqual(len(self._executions()), 1)

    def test_other_days_do_nothing(self):
        stats = run_daily_check(today=date(2026, 3, 6), session_factory=self.Session)
        self.assertEqual(stats["templates_found"], 0)
        self.assertEqual(self._orders(), [])

    def test_inactive_template_is_not_executed(self):
        with self.Session() as db:
            template = template_store.get_template(db, self.template_id)
            template_store.set_template_active(db, template, False)
            db.commit()

        stats = run_daily_check(today=EXECUTION_DAY, session_factory=self.Session)
        self.assertEqual(stats["templates_found"], 0)
        self.assertEqual(self._orders(), [])

    def test_pinned_patient_gets_single_order(self):
        with self.Session() as db:
            institution = add_institution(db, name="Harbour House")
            patient = add_patient(db, institution, first_name="Pinned")
            add_patient(db, institution, first_name="Other")
            pinned = add_template(db, institution, [], execution_day=12, delivery_day=14, patient=patient)
            template_store.add_template_item(db, pinned, self.gloves_id, 5)
            db.commit()
            patient_id = patient.id

        stats = run_daily_check(today=date(2026, 3, 12), session_factory=self.Session)
        self.assertEqual(stats["orders_created"], 1)
        orders = self._orders()
        self.assertEqual([order.patient_id for order in orders], [patient_id])
        self.assertEqual(orders[0].scheduled_date, date(2026, 3, 14))

    def test_template_whose_orders_all_fail_stays_open_for_the_month(self):
        with self.Session() as db:
            db.get(Product, self.gloves_id).stock_quantity = 0
            db.commit()

        stats = run_daily_check(today=EXECUTION_DAY, session_factory=self.Session)
        self.assertEqual(stats["templates_failed"], 1)
        self.assertEqual(stats["templates_processed"], 0)
        self.assertEqual(stats["orders_created"], 0)
        self.assertEqual(self._orders(), [])
        self.assertEqual(self._executions(), [])

        with self.Session() as db:
            db.get(Product, self.gloves_id).stock_quantity = 100
            db.commit()

        stats = run_daily_check(today=EXECUTION_DAY, session_factory=self.Session)
        self.assertEqual(stats["templates_processed"], 1)
        self.assertEqual(stats["orders_created"], 3)

    def test_notified_execution_stays_approvable_when_all_orders_fail(self):
        run_notification_check(
            today=NOTIFICATION_DAY,
            session_factory=self.Session,
            notifier=lambda message, **kwargs: True,
        )
        with self.Session() as db:
            db.get(Product, self.gloves_id).is_available = False
            db.commit()

        stats = run_daily_check(today=EXECUTION_DAY, session_factory=self.Session)
        self.assertEqual(stats["templates_failed"], 1)
        execution = self._executions()[0]
        self.assertTrue(execution.notification_sent)
        self.assertFalse(execution.is_approved)
        self.assertFalse(execution.orders_created)

    def test_single_failing_order_is_skipped(self):
        calls = {"count": 0}

        def flaky_create_order(db, **kwargs):
            calls["count"] += 1
            if calls["count"] == 2:
                raise ValidationError("Patient record locked")
            return create_order(db, **kwargs)

        with patch.object(recurring_scheduler, "create_order", side_effect=flaky_create_order):
            stats = run_daily_check(today=EXECUTION_DAY, session_factory=self.Session)

        self.assertEqual(stats["templates_processed"], 1)
        self.assertEqual(stats["templates_failed"], 0)
        self.assertEqual(stats["orders_created"], 2)
        execution = self._executions()[0]
        self.assertTrue(execution.orders_created)
        self.assertEqual(sorted(execution.created_order_ids), [order.id for order in self._orders()])

    def test_template_without_active_patients_closes_the_month(self):
        with self.Session() as db:
            for patient in db.execute(select(Patient)).scalars():
                patient.is_active = False
            db.commit()

        stats = run_daily_check(today=EXECUTION_DAY, session_factory=self.Session)
        self.assertEqual(stats["templates_processed"], 1)
        self.assertEqual(stats["orders_created"], 0)
        self.assertTrue(self._executions()[0].orders_created)

    def test_notification_pass_marks_execution_once(self):
        sent = []

        def notifier(message, **kwargs):
            sent.append((message, kwargs))
            return True

        stats = run_notification_check(today=NOTIFICATION_DAY, session_factory=self.Session, notifier=notifier)
        self.assertEqual(stats["notifications_sent"], 1)
        self.assertEqual(len(sent), 1)
        self.assertEqual(sent[0][1]["recipient"], "Sunrise Care")
        self.assertIn("2026-03-20", sent[0][0])

        again = run_notification_check(today=NOTIFICATION_DAY, session_factory=self.Session, notifier=notifier)
        self.assertEqual(again["notifications_sent"], 0)
        self.assertEqual(len(sent), 1)

        execution = self._executions()[0]
        self.assertTrue(execution.notification_sent)
        self.assertFalse(execution.orders_created)

    def test_failed_notification_is_not_marked_sent(self):
        def notifier(message, **kwargs):
            raise RuntimeError("webhook down")

        stats = run_notification_check(today=NOTIFICATION_DAY, session_factory=self.Session, notifier=notifier)
        self.assertEqual(stats["notifications_sent"], 0)
        self.assertFalse(self._executions()[0].notification_sent)

    def test_notified_execution_is_fulfilled_on_execution_day(self):
        run_notification_check(
            today=NOTIFICATION_DAY,
            session_factory=self.Session,
            notifier=lambda message, **kwargs: True,
        )
        stats = run_daily_check(today=EXECUTION_DAY, session_factory=self.Session)
        self.assertEqual(stats["orders_created"], 3)
        self.assertEqual(len(self._executions()), 1)

    def test_notification_message_lists_items(self):
        with self.Session() as db:
            view = template_store.build_views(db, [template_store.get_template(db, self.template_id)])[0]
            message = build_notification_message(view, "Sunrise Care", EXECUTION_DAY)
        self.assertIn("Monthly gloves", message)
        self.assertIn("3 active patient(s)", message)
        self.assertIn("2 x Gloves", message)


if __name__ == "__main__":
    unittest.main()
