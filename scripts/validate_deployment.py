"""
Pre-Deploy and Smoke Test Script.

Runs against the configured database and Redis through the application
itself and executes a login smoke test:
1. Health Check
2. Register a throwaway account
3. Successful login and /me
4. Failed logins up to the lockout threshold
5. Lockout denial on the correct password
"""

import sys
import uuid

from fastapi.testclient import TestClient
from fintrack.app.main import app
from fintrack.app.core.config import get_security_policy


def print_step(step, msg):
    print(f"[{step}] {msg}")


def fail(msg):
    print(f"❌ FAILURE: {msg}")
    sys.exit(1)


def success(msg):
    print(f"✅ {msg}")


def main():
    print("🚀 Starting Deployment Validation...")
    policy = get_security_policy()

    with TestClient(app) as client:
        # 1. Health Check
        print_step("PRE-DEPLOY", "Checking /health...")
        response = client.get("/health")
        if response.status_code != 200:
            fail(f"Health check failed: {response.status_code}")
        success("Health check passed")

        # 2. Register
        suffix = uuid.uuid4().hex[:8]
        username = f"smoke_{suffix}"
        password = f"Smoke-{suffix}-pass"
        print_step("SMOKE", f"Registering {username}...")
        response = client.post("/v1/auth/register", json={
            "email": f"{username}@example.com",
            "username": username,
            "password": password,
        })
        if response.status_code != 201:
            fail(f"Registration failed: {response.status_code} {response.text}")
        success("Registration passed")

        # 3. Login and /me
        response = client.post("/v1/auth/login", json={"identifier": username, "password": password})
        if response.status_code != 200:
            fail(f"Login failed: {response.status_code} {response.text}")
        headers = {"Authorization": f"Bearer {response.json()['access_token']}"}
        response = client.get("/v1/auth/me", headers=headers)
        if response.status_code != 200:
            fail(f"/me failed: {response.status_code} {response.text}")
        success("Login and /me passed")

        # 4. Failed logins
        print_step("SMOKE", f"Sending {policy.max_failed_attempts} failed logins...")
        for attempt in range(policy.max_failed_attempts):
            response = client.post("/v1/auth/login", json={"identifier": username, "password": "wrong-password"})
            if response.status_code != 401:
                fail(f"Failed login {attempt + 1} returned {response.status_code}")
        success("Failed logins rejected with the generic error")

        # 5. Lockout
        response = client.post("/v1/auth/login", json={"identifier": username, "password": password})
        if response.status_code != 403:
            fail(f"Account was not locked out: {response.status_code} {response.text}")
        details = response.json()["details"]
        success(f"Lockout active: status={details['account_status']} remaining={details['remaining_minutes']} min")

    success("Deployment Validation Passed!")


if __name__ == "__main__":
    main()
