#!/usr/bin/env python3
# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Print a fresh RS256 key pair as JWT_PRIVATE_KEY / JWT_PUBLIC_KEY exports.
"""

from escrow_api.services.auth import generate_key_pair


def as_env_value(pem: str) -> str:
    return pem.strip().replace("\n", "\\n")


def main():
    private_key, public_key = generate_key_pair()

    print("=== JWT PRIVATE KEY ===")
    print(private_key)
    print("=== JWT PUBLIC KEY ===")
    print(public_key)

    print("=== Environment Variables ===")
    print(f'JWT_PRIVATE_KEY="{as_env_value(private_key)}"')
    print(f'JWT_PUBLIC_KEY="{as_env_value(public_key)}"')


if __name__ == "__main__":
    main()
