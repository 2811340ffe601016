import sys
from pathlib import Path
import os

from werkzeug.security import generate_password_hash

# Ensure repo root is on sys.path when running as a script (Windows-friendly).
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from app.boardroom.constants import PERMISSIONS, ROLE_NAMES, ROLE_PERMISSIONS
from app.boardroom.models import Organization, Permission, Role, User
from scripts._db_utils import script_session


def _slugify(name: str) -> str:
    out = "".join(c if c.isalnum() else "-" for c in name.strip().lower())
    return "-".join(p for p in out.split("-") if p) or "board"


def seed_only(*, database_url: str | None = None) -> None:
    """
    Seed permissions/roles/admin user in an idempotent way.
    Does NOT overwrite an existing admin user's password.

    If ORG_NAME is set, the organization is created (once) and the admin is
    attached to it when the admin has no organization yet.
    """
    admin_email = (os.environ.get("ADMIN_EMAIL") or "admin@boardroom.local").strip().lower()
    admin_password = os.environ.get("ADMIN_PASSWORD") or "change-me"
    org_name = (os.environ.get("ORG_NAME") or "").strip()

    db_url = (database_url or os.environ.get("DATABASE_URL") or "sqlite:///boardroom.db").strip()

    # Use direct engine/session so this can run in release without importing app.wsgi (avoids recursion).
    with script_session(db_url) as s:
        # Permissions (idempotent)
        def ensure_perm(key: str, name: str) -> Permission:
            p = s.query(Permission).filter(Permission.key == key).one_or_none()
            if not p:
                p = Permission(key=key, name=name)
                s.add(p)
            return p

        perms = {key: ensure_perm(key, name) for key, name in PERMISSIONS}

        # Roles
        roles: dict[str, Role] = {}
        for role_key, perm_keys in ROLE_PERMISSIONS.items():
            role = s.query(Role).filter(Role.key == role_key).one_or_none()
            if not role:
                role = Role(key=role_key, name=ROLE_NAMES[role_key])
                s.add(role)
            for key in perm_keys:
                if perms[key] not in role.permissions:
                    role.permissions.append(perms[key])
            roles[role_key] = role

        org = None
        if org_name:
            slug = _slugify(org_name)
            org = s.query(Organization).filter(Organization.slug == slug).one_or_none()
            if not org:
                org = Organization(name=org_name, slug=slug)
                s.add(org)
                s.flush()

        # User
        user = s.query(User).filter(User.email == admin_email).one_or_none()
        if not user:
            user = User(email=admin_email, password_hash=generate_password_hash(admin_password), is_active=True)
            s.add(user)
        if org is not None and user.organization_id is None:
            user.organization_id = org.id
        if roles["admin"] not in user.roles:
            user.roles.append(roles["admin"])

    print("Initialized database (seed_only).")
    print(f"Admin email: {admin_email}")
    print("Admin password: (from ADMIN_PASSWORD)")
    if org_name:
        print(f"Organization: {org_name}")


def main() -> None:
    seed_only(database_url=None)


if __name__ == "__main__":
    main()
