from django.core.management.base import BaseCommand

from records.models import Department, Hospital
from records.services import sharing, tenants


class Command(BaseCommand):
    help = "Recompute cached hospital/department counters; expire lapsed subscriptions and sharing grants."

    def handle(self, *args, **options):
        expired_subs = tenants.expire_lapsed_subscriptions()
        expired_grants = sharing.deactivate_expired()

        hospitals = 0
        for hospital in Hospital.objects.filter(is_active=True).iterator():
            tenants.refresh_hospital_stats(hospital)
            hospitals += 1
        departments = 0
        for dept in Department.objects.filter(is_active=True).iterator():
            tenants.refresh_department_stats(dept)
            departments += 1

        self.stdout.write(self.style.SUCCESS(
            f"refreshed {hospitals} hospitals, {departments} departments; "
            f"expired {expired_subs} subscriptions, {expired_grants} sharing grants"
        ))
