
import os
import sys

sys.path.append(os.path.join(os.getcwd(), 'app'))

from app import create_app
from repositories.user_repository import UserRepository
from utils import mask_credential


def list_users():
    with create_app({'SCHEDULER_ENABLED': False}).app_context():
        users = UserRepository.get_all()
        if not users:
            print("No users found in the database.")
            return

        print("Users found:")
        for u in users:
            role = "admin" if u.is_admin else (f"sub-account of {u.parent_user_id}" if u.is_sub_account else "user")
            state = "enabled" if u.enabled else f"disabled ({u.disabled_reason or 'unknown'})"
            print(f"- {u.username} (ID: {u.id}, {role}, {state}, RD key: {mask_credential(u.rd_api_key) or '-'})")


if __name__ == "__main__":
    list_users()
