"""
Tests for the QC lane engine: start, product validation, pending/resume and
completion with box packing.
"""
import pytest

from fulfillment.core.errors import (
    BoxNotFoundError, ConflictError, CrossLaneConflictError, DuplicateBoxIdError,
    InvalidStateError, NotFoundError, QuantityMismatchError, ValidationFailedError,
    ValidationIncompleteError,
)
from fulfillment.db.models import (
    OrderDetail, QCOnline, QCRibbon, QCRibbonDetail, QCOnlineDetail,
    ProcessingStatus, QCStatus,
)
from fulfillment.services.order_lifecycle import OrderLineDraft, cancel_order
from fulfillment.services.qc_lane import (
    ENGINES, BoxLine, QCLane, online_engine, ribbon_engine
)


def validate_all(db, engine, qc, order, actor_id):
    for detail in list(order.details):
        engine.validate_product(db, qc.id, detail.sku, detail.quantity, actor_id=actor_id)


class TestLanes:

    def test_other_lane(self):
        assert QCLane.RIBBON.other is QCLane.ONLINE
        assert QCLane.ONLINE.other is QCLane.RIBBON

    def test_engines_bind_their_tables(self):
        assert ENGINES[QCLane.RIBBON].model is QCRibbon
        assert ENGINES[QCLane.ONLINE].model is QCOnline
        assert ribbon_engine.detail_model is QCRibbonDetail
        assert online_engine.detail_model is QCOnlineDetail


class TestStartQC:

    @pytest.mark.parametrize("lane_engine", [ribbon_engine, online_engine])
    def test_start_moves_order_to_qc_progress(self, db, refs, picked_order, lane_engine):
        order = picked_order()

        qc = lane_engine.start(db, order.tracking_number.lower(), actor_id=refs.qc)

        assert qc.id is not None
        assert qc.tracking_number == order.tracking_number
        assert qc.qc_by == refs.qc
        assert qc.status == QCStatus.IN_PROGRESS
        assert qc.complained is False
        assert order.processing_status == ProcessingStatus.QC_PROGRESS

    def test_same_lane_twice_conflicts(self, db, refs, picked_order):
        order = picked_order()
        ribbon_engine.start(db, order.tracking_number, actor_id=refs.qc)

        with pytest.raises(ConflictError, match="already exists"):
            ribbon_engine.start(db, order.tracking_number, actor_id=refs.qc)
        assert db.query(QCRibbon).count() == 1

    def test_other_lane_conflicts(self, db, refs, picked_order):
        """Test that a tracking number is checked in exactly one lane."""
        order = picked_order()
        ribbon_engine.start(db, order.tracking_number, actor_id=refs.qc)

        with pytest.raises(CrossLaneConflictError) as exc:
            online_engine.start(db, order.tracking_number, actor_id=refs.qc)
        assert exc.value.other_lane == "ribbon"
        assert exc.value.status_code == 409
        assert db.query(QCOnline).count() == 0

    def test_unknown_tracking_number(self, db, refs):
        with pytest.raises(NotFoundError):
            ribbon_engine.start(db, "JNE404", actor_id=refs.qc)

    def test_blank_tracking_number(self, db, refs):
        with pytest.raises(ValidationFailedError):
            ribbon_engine.start(db, "   ", actor_id=refs.qc)

    def test_requires_picking_completed(self, db, refs, make_order):
        order = make_order()

        with pytest.raises(InvalidStateError, match="ready_to_pick"):
            ribbon_engine.start(db, order.tracking_number, actor_id=refs.qc)
        assert db.query(QCRibbon).count() == 0

    def test_canceled_order(self, db, refs, make_order):
        order = make_order()
        cancel_order(db, order.id, actor_id=refs.coordinator)

        with pytest.raises(InvalidStateError, match="canceled"):
            ribbon_engine.start(db, order.tracking_number, actor_id=refs.qc)


class TestValidateProduct:

    def test_marks_line_valid(self, db, refs, picked_order):
        order = picked_order()
        qc = ribbon_engine.start(db, order.tracking_number, actor_id=refs.qc)

        detail = ribbon_engine.validate_product(db, qc.id, " SKU-A ", 2, actor_id=refs.qc)

        assert detail.sku == "SKU-A"
        assert detail.is_valid is True
        flags = {d.sku: d.is_valid for d in db.query(OrderDetail).filter(OrderDetail.order_id == order.id)}
        assert flags == {"SKU-A": True, "SKU-B": False}

    def test_quantity_mismatch(self, db, refs, picked_order):
        order = picked_order()
        qc = ribbon_engine.start(db, order.tracking_number, actor_id=refs.qc)

        with pytest.raises(QuantityMismatchError) as exc:
            ribbon_engine.validate_product(db, qc.id, "SKU-A", 3, actor_id=refs.qc)
        assert exc.value.expected == 2
        assert exc.value.actual == 3
        assert exc.value.status_code == 400

    def test_unknown_sku(self, db, refs, picked_order):
        order = picked_order()
        qc = ribbon_engine.start(db, order.tracking_number, actor_id=refs.qc)

        with pytest.raises(NotFoundError, match="SKU-Z"):
            ribbon_engine.validate_product(db, qc.id, "SKU-Z", 1, actor_id=refs.qc)

    def test_unknown_qc(self, db, refs):
        with pytest.raises(NotFoundError):
            ribbon_engine.validate_product(db, 999, "SKU-A", 1, actor_id=refs.qc)

    def test_repeat_is_idempotent(self, db, refs, picked_order):
        order = picked_order()
        qc = ribbon_engine.start(db, order.tracking_number, actor_id=refs.qc)

        ribbon_engine.validate_product(db, qc.id, "SKU-B", 1, actor_id=refs.qc)
        detail = ribbon_engine.validate_product(db, qc.id, "SKU-B", 1, actor_id=refs.qc)

        assert detail.is_valid is True

    def test_repeated_sku_validates_each_line(self, db, refs, picked_order):
        """Test that a SKU listed twice needs two scans."""
        lines = [
            OrderLineDraft(sku="SKU-R", product_name="Ribbon", quantity=1, price=100),
            OrderLineDraft(sku="SKU-R", product_name="Ribbon", quantity=1, price=100),
        ]
        order = picked_order(lines=lines)
        qc = ribbon_engine.start(db, order.tracking_number, actor_id=refs.qc)

        first = ribbon_engine.validate_product(db, qc.id, "SKU-R", 1, actor_id=refs.qc)
        second = ribbon_engine.validate_product(db, qc.id, "SKU-R", 1, actor_id=refs.qc)

        assert first.id != second.id
        assert all(d.is_valid for d in order.details)

    def test_allowed_while_pending(self, db, refs, picked_order):
        order = picked_order()
        qc = ribbon_engine.start(db, order.tracking_number, actor_id=refs.qc)
        ribbon_engine.mark_pending(db, qc.id, actor_id=refs.qc)

        detail = ribbon_engine.validate_product(db, qc.id, "SKU-A", 2, actor_id=refs.qc)

        assert detail.is_valid is True

    def test_rejected_after_completion(self, db, refs, qc_completed_order):
        order, qc = qc_completed_order()

        with pytest.raises(InvalidStateError, match="completed"):
            ribbon_engine.validate_product(db, qc.id, "SKU-A", 2, actor_id=refs.qc)


class TestPendingResume:

    def test_pending_then_resume(self, db, refs, picked_order):
        order = picked_order()
        qc = online_engine.start(db, order.tracking_number, actor_id=refs.qc)

        online_engine.mark_pending(db, qc.id, actor_id=refs.qc)
        assert qc.status == QCStatus.PENDING

        online_engine.resume(db, qc.id, actor_id=refs.qc)
        assert qc.status == QCStatus.IN_PROGRESS

    def test_resume_requires_pending(self, db, refs, picked_order):
        order = picked_order()
        qc = online_engine.start(db, order.tracking_number, actor_id=refs.qc)

        with pytest.raises(InvalidStateError, match="expected pending"):
            online_engine.resume(db, qc.id, actor_id=refs.qc)

    def test_pending_twice_is_invalid(self, db, refs, picked_order):
        order = picked_order()
        qc = online_engine.start(db, order.tracking_number, actor_id=refs.qc)
        online_engine.mark_pending(db, qc.id, actor_id=refs.qc)

        with pytest.raises(InvalidStateError):
            online_engine.mark_pending(db, qc.id, actor_id=refs.qc)

    def test_unknown_qc(self, db, refs):
        with pytest.raises(NotFoundError):
            online_engine.mark_pending(db, 42, actor_id=refs.qc)


class TestCompleteQC:

    def _started(self, db, refs, picked_order, lane_engine=ribbon_engine):
        order = picked_order()
        qc = lane_engine.start(db, order.tracking_number, actor_id=refs.qc)
        return order, qc

    @pytest.mark.parametrize("lane_engine", [ribbon_engine, online_engine])
    def test_complete_writes_boxes_and_moves_order(self, db, refs, picked_order, lane_engine):
        order, qc = self._started(db, refs, picked_order, lane_engine)
        validate_all(db, lane_engine, qc, order, refs.qc)

        outcome = lane_engine.complete(
            db, qc.id,
            [BoxLine(box_id=refs.box_small, quantity=2), BoxLine(box_id=refs.box_large, quantity=1)],
            actor_id=refs.qc,
        )

        assert outcome.completed is True
        assert outcome.qc.status == QCStatus.COMPLETED
        assert order.processing_status == ProcessingStatus.QC_COMPLETED
        assert sorted((d.box_id, d.quantity) for d in qc.details) == sorted([
            (refs.box_small, 2), (refs.box_large, 1)
        ])

    def test_unvalidated_products_block_completion(self, db, refs, picked_order):
        order, qc = self._started(db, refs, picked_order)
        ribbon_engine.validate_product(db, qc.id, "SKU-A", 2, actor_id=refs.qc)

        with pytest.raises(ValidationIncompleteError) as exc:
            ribbon_engine.complete(db, qc.id, [BoxLine(refs.box_small, 1)], actor_id=refs.qc)
        assert exc.value.pending_skus == ["SKU-B"]
        assert qc.status == QCStatus.IN_PROGRESS
        assert db.query(QCRibbonDetail).count() == 0

    def test_duplicate_box_ids(self, db, refs, picked_order):
        order, qc = self._started(db, refs, picked_order)
        validate_all(db, ribbon_engine, qc, order, refs.qc)

        with pytest.raises(DuplicateBoxIdError):
            ribbon_engine.complete(
                db, qc.id,
                [BoxLine(refs.box_small, 1), BoxLine(refs.box_small, 2)],
                actor_id=refs.qc,
            )
        assert db.query(QCRibbonDetail).count() == 0
        assert order.processing_status == ProcessingStatus.QC_PROGRESS

    def test_unknown_box(self, db, refs, picked_order):
        order, qc = self._started(db, refs, picked_order)
        validate_all(db, ribbon_engine, qc, order, refs.qc)

        with pytest.raises(BoxNotFoundError) as exc:
            ribbon_engine.complete(db, qc.id, [BoxLine(9999, 1)], actor_id=refs.qc)
        assert exc.value.box_id == 9999

    def test_empty_boxes(self, db, refs, picked_order):
        order, qc = self._started(db, refs, picked_order)
        validate_all(db, ribbon_engine, qc, order, refs.qc)

        with pytest.raises(ValidationFailedError, match="At least one box"):
            ribbon_engine.complete(db, qc.id, [], actor_id=refs.qc)

    def test_non_positive_box_quantity(self, db, refs, picked_order):
        order, qc = self._started(db, refs, picked_order)
        validate_all(db, ribbon_engine, qc, order, refs.qc)

        with pytest.raises(ValidationFailedError, match="greater than 0"):
            ribbon_engine.complete(db, qc.id, [BoxLine(refs.box_small, 0)], actor_id=refs.qc)

    def test_pending_record_completes(self, db, refs, picked_order):
        order, qc = self._started(db, refs, picked_order)
        validate_all(db, ribbon_engine, qc, order, refs.qc)
        ribbon_engine.mark_pending(db, qc.id, actor_id=refs.qc)

        outcome = ribbon_engine.complete(db, qc.id, [BoxLine(refs.box_small, 3)], actor_id=refs.qc)

        assert outcome.completed is True
        assert qc.status == QCStatus.COMPLETED
        assert order.processing_status == ProcessingStatus.QC_COMPLETED
        assert [(d.box_id, d.quantity) for d in qc.details] == [(refs.box_small, 3)]

    def test_completed_record_is_a_no_op(self, db, refs, qc_completed_order):
        order, qc = qc_completed_order()

        outcome = ribbon_engine.complete(db, qc.id, [BoxLine(refs.box_large, 5)], actor_id=refs.qc)

        assert outcome.completed is False
        assert "already completed" in outcome.message
        assert db.query(QCRibbonDetail).count() == 1

    def test_missing_record_is_a_no_op(self, db, refs):
        outcome = ribbon_engine.complete(db, 12345, [BoxLine(refs.box_small, 1)], actor_id=refs.qc)

        assert outcome.completed is False
        assert outcome.qc is None
        assert "does not exist" in outcome.message
