import bleach
from rest_framework import serializers


class CleanCharField(serializers.CharField):
    """CharField that strips markup from free text before it is stored."""

    def to_internal_value(self, data):
        value = super().to_internal_value(data)
        return bleach.clean(value, tags=[], strip=True).strip()


def iso(dt):
    return dt.isoformat() if dt else None
