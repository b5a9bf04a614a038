from astu.cli import run

run()
