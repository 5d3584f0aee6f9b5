#!/usr/bin/env python3
"""
Entrypoint do container: aplica as migracoes e sobe, no mesmo processo pai,
o worker Celery (com beat embutido, que dispara a sincronizacao diaria) e a API.
"""
import os
import signal
import subprocess
import sys
import time

BACKEND_DIR = os.path.dirname(os.path.abspath(__file__))

children = []


def migrate():
    print("[startup] alembic upgrade head")
    result = subprocess.run(['alembic', 'upgrade', 'head'], capture_output=True, text=True, cwd=BACKEND_DIR)
    if result.returncode != 0:
        # Sobe mesmo assim; a API responde 500 se o schema estiver errado
        print(f"[startup] migracao falhou: {result.stderr}")
    elif result.stdout:
        print(result.stdout)


def spawn(name, command):
    process = subprocess.Popen(command, cwd=BACKEND_DIR)
    print(f"[startup] {name} pid={process.pid}")
    children.append(process)
    return process


def scheduler_command():
    return [
        'celery', '-A', 'app.tasks.celery_app', 'worker',
        '--beat',
        '--loglevel=info',
        # uma coleta por vez (browser + OCR)
        '--concurrency=1',
        '-Q', 'default,celery',
    ]


def api_command():
    return ['uvicorn', 'app.main:app', '--host', '0.0.0.0', '--port', os.environ.get('PORT', '8000')]


def shutdown(signum=None, frame=None):
    for process in children:
        if process.poll() is None:
            process.terminate()
    for process in children:
        try:
            process.wait(timeout=10)
        except subprocess.TimeoutExpired:
            process.kill()
    sys.exit(0)


def main():
    migrate()

    signal.signal(signal.SIGTERM, shutdown)
    signal.signal(signal.SIGINT, shutdown)

    if os.environ.get('REDIS_URL'):
        spawn("celery worker+beat", scheduler_command())
        time.sleep(2)
    else:
        print("[startup] REDIS_URL ausente: sincronizacao diaria desativada, apenas /t/sync")

    api = spawn("uvicorn", api_command())
    try:
        api.wait()
    except KeyboardInterrupt:
        pass
    finally:
        shutdown()


if __name__ == '__main__':
    main()
