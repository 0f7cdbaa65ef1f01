from __future__ import annotations

import argparse

import uvicorn

from playfix.settings import Settings


def main() -> None:
    s = Settings()
    ap = argparse.ArgumentParser(description="Run the PLAYFIX analysis server (POST /analyze).")
    ap.add_argument("--host", default=s.host)
    ap.add_argument("--port", type=int, default=s.port)
    args = ap.parse_args()

    uvicorn.run("playfix.service.app:create_app", factory=True, host=args.host, port=args.port)


if __name__ == "__main__":
    main()
