import django_filters as filters

from settlement.models import DisputeCase, RefundRequest


class RefundRequestFilter(filters.FilterSet):
    purchase = filters.UUIDFilter(field_name="purchase_id")
    created_after = filters.IsoDateTimeFilter(field_name="created_at", lookup_expr="gte")
    created_before = filters.IsoDateTimeFilter(field_name="created_at", lookup_expr="lte")

    class Meta:
        model = RefundRequest
        fields = ["status", "reason", "purchase", "created_after", "created_before"]


class DisputeCaseFilter(filters.FilterSet):
    purchase = filters.UUIDFilter(field_name="purchase_id")
    due_before = filters.IsoDateTimeFilter(field_name="evidence_due_by", lookup_expr="lte")

    class Meta:
        model = DisputeCase
        fields = ["status", "purchase", "due_before"]
