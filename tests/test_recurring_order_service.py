import unittest
from datetime import date
from decimal import Decimal

from caresupply.core.exceptions import ForbiddenError, NotFoundError, ValidationError
from caresupply.models import Order, Product
from caresupply.services import recurring_order_service, template_store
from tests.support import (
    add_institution,
    add_patient,
    add_product,
    add_user,
    make_session_factory,
)


class TemplateManagementTest(unittest.TestCase):
    def setUp(self):
        self.engine, Session = make_session_factory()
        self.db = Session()
        self.institution = add_institution(self.db)
        self.admin = add_user(self.db, self.institution)
        self.gloves = add_product(self.db, name="Gloves", price="2.00")
        self.db.commit()

    def tearDown(self):
        self.db.close()
        self.engine.dispose()

    def _create(self, **overrides):
        params = dict(
            institution_id=self.institution.id,
            name="Monthly gloves",
            execution_day_of_month=5,
            delivery_day_of_month=20,
            items=[{"product_id": self.gloves.id, "quantity": 2}],
            created_by_user_id=self.admin.id,
        )
        params.update(overrides)
        view = recurring_order_service.create_template(self.db, **params)
        self.db.commit()
        return view

    def test_create_template_uses_default_notification_lead(self):
        view = self._create()
        self.assertEqual(view.template.notification_days_before, 5)
        self.assertTrue(view.template.is_active)
        self.assertEqual(len(view.items), 1)
        self.assertEqual(view.items[0].line_total, Decimal("4.00"))

    def test_delivery_must_follow_execution(self):
        for execution_day, delivery_day in ((20, 20), (20, 5)):
            with self.assertRaises(ValidationError):
                self._create(execution_day_of_month=execution_day, delivery_day_of_month=delivery_day)

    def test_days_must_exist_in_every_month(self):
        for execution_day, delivery_day in ((0, 10), (5, 29), (29, 30), (-1, 3)):
            with self.assertRaises(ValidationError):
                self._create(execution_day_of_month=execution_day, delivery_day_of_month=delivery_day)
        view = self._create(execution_day_of_month=27, delivery_day_of_month=28)
        self.assertEqual(view.template.delivery_day_of_month, 28)

    def test_template_needs_items_and_valid_products(self):
        with self.assertRaises(ValidationError):
            self._create(items=[])
        with self.assertRaises(ValidationError):
            self._create(items=[{"product_id": self.gloves.id, "quantity": 0}])
        with self.assertRaises(NotFoundError):
            self._create(items=[{"product_id": 999, "quantity": 1}])

    def test_negative_notification_lead_rejected(self):
        with self.assertRaises(ValidationError):
            self._create(notification_days_before=-1)

    def test_pinned_patient_must_belong_to_institution(self):
        other = add_institution(self.db, name="Elsewhere")
        stranger = add_patient(self.db, other)
        self.db.commit()
        with self.assertRaises(ForbiddenError):
            self._create(patient_id=stranger.id)

    def test_toggle_and_delete_check_ownership(self):
        view = self._create()
        template_id = view.template.id

        with self.assertRaises(ForbiddenError):
            recurring_order_service.toggle_template_active(
                self.db, template_id, False, institution_id=self.institution.id + 1
            )

        recurring_order_service.toggle_template_active(
            self.db, template_id, False, institution_id=self.institution.id
        )
        self.db.commit()
        self.assertFalse(
            recurring_order_service.get_template(
                self.db, template_id, institution_id=self.institution.id
            ).template.is_active
        )

        recurring_order_service.delete_template(self.db, template_id, institution_id=self.institution.id)
        self.db.commit()
        with self.assertRaises(NotFoundError):
            recurring_order_service.get_template(self.db, template_id, institution_id=None)

    def test_list_templates_is_scoped(self):
        self._create()
        other = add_institution(self.db, name="Elsewhere")
        self.db.commit()
        self._create(institution_id=other.id, name="Other gloves")

        names = [view.template.name for view in recurring_order_service.list_templates(self.db, self.institution.id)]
        self.assertEqual(names, ["Monthly gloves"])


class ApprovalGateTest(unittest.TestCase):
    def setUp(self):
        self.engine, Session = make_session_factory()
        self.db = Session()
        self.institution = add_institution(self.db)
        self.admin = add_user(self.db, self.institution)
        for first_name in ("Ada", "Alan"):
            add_patient(self.db, self.institution, first_name=first_name)
        self.gloves = add_product(self.db, name="Gloves", price="2.00")
        self.db.commit()

        view = recurring_order_service.create_template(
            self.db,
            institution_id=self.institution.id,
            name="Monthly gloves",
            execution_day_of_month=5,
            delivery_day_of_month=20,
            items=[{"product_id": self.gloves.id, "quantity": 2}],
        )
        self.template = view.template
        self.execution = template_store.create_execution(self.db, self.template.id, date(2026, 3, 1))
        self.db.commit()

    def tearDown(self):
        self.db.close()
        self.engine.dispose()

    def _notify(self):
        template_store.mark_notification_sent(self.db, self.execution)
        self.db.commit()

    def test_approve_creates_orders_for_active_patients(self):
        self._notify()
        pending = recurring_order_service.list_pending_approvals(self.db, self.institution.id)
        self.assertEqual([row["execution_id"] for row in pending], [self.execution.id])

        result = recurring_order_service.approve_execution(
            self.db,
            self.execution.id,
            approver_user_id=self.admin.id,
            institution_id=self.institution.id,
        )
        self.db.commit()

        self.assertEqual(result["orders_created"], 2)
        orders = self.db.query(Order).order_by(Order.id).all()
        self.assertEqual([order.id for order in orders], result["order_ids"])
        for order in orders:
            self.assertEqual(order.scheduled_date, date(2026, 3, 20))
            self.assertEqual(order.created_by_user_id, self.admin.id)
        self.assertTrue(self.execution.is_approved)
        self.assertEqual(self.execution.approved_by_user_id, self.admin.id)
        self.assertEqual(recurring_order_service.list_pending_approvals(self.db, self.institution.id), [])

    def test_approval_requires_notification(self):
        with self.assertRaises(NotFoundError):
            recurring_order_service.approve_execution(
                self.db, self.execution.id, approver_user_id=self.admin.id, institution_id=None
            )

    def test_second_approval_is_rejected(self):
        self._notify()
        recurring_order_service.approve_execution(
            self.db, self.execution.id, approver_user_id=self.admin.id, institution_id=None
        )
        self.db.commit()
        with self.assertRaises(NotFoundError):
            recurring_order_service.approve_execution(
                self.db, self.execution.id, approver_user_id=self.admin.id, institution_id=None
            )
        self.assertEqual(self.db.query(Order).count(), 2)

    def test_unknown_execution(self):
        with self.assertRaises(NotFoundError):
            recurring_order_service.approve_execution(
                self.db, 999, approver_user_id=self.admin.id, institution_id=None
            )

    def test_other_institution_cannot_approve(self):
        self._notify()
        with self.assertRaises(ForbiddenError):
            recurring_order_service.approve_execution(
                self.db,
                self.execution.id,
                approver_user_id=self.admin.id,
                institution_id=self.institution.id + 1,
            )

    def test_failed_order_rolls_back_whole_approval(self):
        self._notify()
        self.db.get(Product, self.gloves.id).is_available = False
        self.db.commit()

        with self.assertRaises(ValidationError):
            recurring_order_service.approve_execution(
                self.db, self.execution.id, approver_user_id=self.admin.id, institution_id=None
            )
        self.db.rollback()

        execution = template_store.get_execution(self.db, self.execution.id)
        self.assertFalse(execution.is_approved)
        self.assertFalse(execution.orders_created)
        self.assertEqual(self.db.query(Order).count(), 0)


if __name__ == "__main__":
    unittest.main()
