from django.conf import settings
from django.core.management.base import BaseCommand, CommandError

from records.models import Role, User


class Command(BaseCommand):
    help = "Ensure the platform super admin exists with SUPER_ADMIN_EMAIL / SUPER_ADMIN_PASSWORD (idempotent)."

    def add_arguments(self, parser):
        parser.add_argument("--email", default=None)
        parser.add_argument("--password", default=None)

    def handle(self, *args, **opts):
        email = (opts["email"] or settings.SUPER_ADMIN_EMAIL or "").strip().lower()
        password = opts["password"] or settings.SUPER_ADMIN_PASSWORD
        if not email or not password:
            raise CommandError("SUPER_ADMIN_EMAIL and SUPER_ADMIN_PASSWORD must be set")

        user = User.objects.filter(email=email).first()
        if user is None:
            User.objects.create_superuser(email=email, password=password, first_name="Platform", last_name="Admin")
            self.stdout.write(self.style.SUCCESS(f"created super admin {email}"))
            return
        user.role = Role.SUPER_ADMIN
        user.is_staff = True
        user.is_superuser = True
        user.is_active = True
        user.approval_status = User.APPROVAL_APPROVED
        user.set_password(password)
        user.save(update_fields=["role", "is_staff", "is_superuser", "is_active", "approval_status", "password"])
        self.stdout.write(self.style.SUCCESS(f"updated super admin {email}"))
