# create_token.py
"""Issue a development bearer token. Production tokens come from the identity service."""
import sys

from dotenv import load_dotenv


def create_dev_token():
    print("--- Create Development Token ---")
    load_dotenv()

    try:
        from equiplend.core.security import create_access_token
        from equiplend.models.identity import UserRole
    except (ImportError, ValueError) as e:
        print(f"Error importing application modules: {e}")
        print("Run the script from the project root with SECRET_KEY set.")
        sys.exit(1)

    while True:
        user_id = input("Enter user id: ").strip()
        if user_id: break
        print("User id cannot be empty.")

    roles = [r.value for r in UserRole]
    role = input(f"Enter role {roles} (default: user): ").strip().lower() or UserRole.USER.value
    if role not in roles:
        print(f"Error: unknown role '{role}'.")
        sys.exit(1)

    email = input("Enter email (optional, press Enter to skip): ").strip() or None
    name = input("Enter full name (optional, press Enter to skip): ").strip() or None

    claims = {"sub": user_id, "role": role}
    if email: claims["email"] = email
    if name: claims["name"] = name
    print(create_access_token(claims))


if __name__ == "__main__":
    create_dev_token()
