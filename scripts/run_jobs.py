"""Entrada para o cron externo: python scripts/run_jobs.py <upcoming|renewal|status|overdue>"""
import json
import logging
import os
import sys


def _setup_path():
    root = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
    if root not in sys.path:
        sys.path.insert(0, root)


def main(argv=None):
    _setup_path()
    argv = list(sys.argv[1:] if argv is None else argv)

    from app import create_app
    from services.jobs import JOB_NAMES, run_job

    if len(argv) != 1 or argv[0] not in JOB_NAMES:
        print(f"uso: run_jobs.py <{'|'.join(JOB_NAMES)}>", file=sys.stderr)
        return 2

    app = create_app()
    with app.app_context():
        try:
            result = run_job(argv[0])
        except Exception:
            logging.getLogger("run_jobs").error("Job %s falhou", argv[0], exc_info=True)
            return 1
    print(json.dumps(result, ensure_ascii=False, default=str))
    return 0


if __name__ == "__main__":
    sys.exit(main())
