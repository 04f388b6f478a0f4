#!/usr/bin/env python3
"""
authgate -- Password and passkey sign-in service.

Usage:
  python main.py generate-keys
  python main.py generate-keys >> .env
  python main.py serve
  python main.py serve --host 0.0.0.0 --port 8080

generate-keys prints one RSA private key per token kind as base64 PKCS8 DER,
in .env syntax. The two kinds must never share a key.

Environment variables:
  See core/config.py. DEBUG=true lets the server start without keys (an
  ephemeral pair is generated and tokens do not survive a restart).
"""

import argparse

from auth.keys import generate_key_pair


def _generate_keys(args: argparse.Namespace) -> None:
    print(f"AUTHORIZATION_TOKEN_PRIVATE_KEY={generate_key_pair()}")
    print(f"REFRESH_TOKEN_PRIVATE_KEY={generate_key_pair()}")


def _serve(args: argparse.Namespace) -> None:
    import uvicorn

    uvicorn.run("asgi:app", host=args.host, port=args.port, reload=args.reload)


def main() -> None:
    parser = argparse.ArgumentParser(
        prog="authgate",
        description="Password and passkey (WebAuthn) sign-in with RS256 session tokens.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py generate-keys >> .env
  python main.py serve --port 8080
  DEBUG=true python main.py serve --reload
        """,
    )
    commands = parser.add_subparsers(dest="command", metavar="COMMAND")

    keys = commands.add_parser("generate-keys", help="Print a fresh signing key pair per token kind")
    keys.set_defaults(func=_generate_keys)

    serve = commands.add_parser("serve", help="Run the API with uvicorn")
    serve.add_argument("--host", default="127.0.0.1", help="Bind address (default: 127.0.0.1)")
    serve.add_argument("--port", type=int, default=8000, help="Bind port (default: 8000)")
    serve.add_argument("--reload", action="store_true", help="Reload on code changes (development only)")
    serve.set_defaults(func=_serve)

    args = parser.parse_args()
    if not getattr(args, "func", None):
        parser.print_help()
        return
    args.func(args)


if __name__ == "__main__":
    main()
