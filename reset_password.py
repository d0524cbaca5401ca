import os

import psycopg2
from dotenv import load_dotenv
from werkzeug.security import generate_password_hash


def reset_password(database_url, email, raw_password):
    """Set a new password hash for the profile with this email. Returns rows updated."""
    password_hash = generate_password_hash(raw_password)
    with psycopg2.connect(database_url) as conn:
        with conn.cursor() as c:
            c.execute(
                "UPDATE profiles SET password_hash = %s, updated_at = CURRENT_TIMESTAMP "
                "WHERE LOWER(email) = LOWER(%s)",
                (password_hash, email),
            )
            updated = int(c.rowcount or 0)
        conn.commit()
    return updated


def main():
    load_dotenv()
    database_url = (os.getenv("DATABASE_URL") or "").strip()
    email = (os.getenv("RESET_EMAIL") or "").strip()
    raw_password = os.getenv("RESET_PASSWORD") or ""

    if not database_url:
        raise RuntimeError("DATABASE_URL not found. Set it in .env")
    if not email:
        raise RuntimeError("RESET_EMAIL is required.")
    if len(raw_password) < 8:
        raise RuntimeError("RESET_PASSWORD must be at least 8 characters.")

    if reset_password(database_url, email, raw_password):
        print(f"Password reset successfully for {email}.")
    else:
        print(f"No profile found for {email}.")


if __name__ == "__main__":
    main()
