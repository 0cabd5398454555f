#!/usr/bin/env python3
"""
Generate secure secrets for the Tipster application
Run this script to generate SECRET_KEY, WTF_CSRF_SECRET_KEY and CRON_SECRET
"""

import secrets


def generate_secrets():
    """Generate secure random keys for the application"""
    print("🔐 Generating secure secrets for Tipster...")
    print("=" * 50)

    print(f"SECRET_KEY={secrets.token_urlsafe(32)}")
    print(f"WTF_CSRF_SECRET_KEY={secrets.token_urlsafe(32)}")
    # Bearer token external schedulers send to the /cron endpoints
    print(f"CRON_SECRET={secrets.token_urlsafe(32)}")

    print("=" * 50)
    print("📝 Copy these values to your .env file")
    print("⚠️  Keep these secrets secure and never commit them to version control!")


if __name__ == "__main__":
    generate_secrets()
