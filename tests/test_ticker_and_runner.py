import sys
import os
sys.path.append(os.path.dirname(os.path.realpath(__file__))+"/../lib")
from ticker import Ticker, ManualClock
from program_runner import ProgramRunner


def test_ticker_fires_immediately():
    clock = ManualClock()
    ticker = Ticker(10, clock=clock)
    assert ticker.is_due()
    assert not ticker.is_due()
    clock.advance(9.9)
    assert not ticker.is_due()
    clock.advance(0.1)
    assert ticker.is_due()
    assert ticker.n_ticks == 2


def test_ticker_waits_one_interval():
    clock = ManualClock(100.0)
    ticker = Ticker(30, clock=clock, fire_immediately=False)
    assert not ticker.is_due()
    clock.advance(29)
    assert ticker.seconds_since_tick() == 29
    assert not ticker.is_due()
    clock.advance(1)
    assert ticker.is_due()

    clock.advance(50)
    ticker.reset()
    assert not ticker.is_due()


def test_manual_clock_sleep():
    clock = ManualClock()
    clock.sleep(2.5)
    clock.sleep(2.5)
    assert clock() == 5.0


def test_run_program_success(tmp_path):
    console_output_file = str(tmp_path / 'console.txt')
    n_polls = []
    runner = ProgramRunner(work_dir=str(tmp_path), poll_interval=0.01)
    success = runner.run_program(sys.executable, [ '-c', 'print("hello from child")' ], name='Child',
        console_output_file=console_output_file, loop_waiting=lambda: n_polls.append(1))

    assert success
    assert runner.exit_code == 0
    assert runner.error_message == ''
    assert 'hello from child' in runner.get_console_output()


def test_run_program_nonzero_exit(tmp_path):
    runner = ProgramRunner(work_dir=str(tmp_path), poll_interval=0.01)
    success = runner.run_program(sys.executable, [ '-c', 'import sys; sys.exit(3)' ], name='Child')
    assert not success
    assert runner.exit_code == 3
    assert runner.error_message == 'Child returned a non-zero exit code: 3'


def test_run_program_missing_executable(tmp_path):
    runner = ProgramRunner(work_dir=str(tmp_path))
    success = runner.run_program(str(tmp_path / 'no_such_program'), [], name='Missing')
    assert not success
    assert runner.error_message.startswith('Unable to start Missing')


def test_run_program_exceeds_max_runtime(tmp_path):
    clock = ManualClock()
    runner = ProgramRunner(work_dir=str(tmp_path), poll_interval=2, clock=clock, sleep=clock.sleep)
    success = runner.run_program(sys.executable, [ '-c', 'import time; time.sleep(60)' ], name='Sleeper',
        max_runtime_seconds=5)
    assert not success
    assert runner.error_message == 'Sleeper exceeded the maximum runtime of 5 seconds'


def test_run_program_abort(tmp_path):
    runner = ProgramRunner(work_dir=str(tmp_path), poll_interval=0.01)
    success = runner.run_program(sys.executable, [ '-c', 'import time; time.sleep(60)' ], name='Sleeper',
        loop_waiting=runner.abort_program_now)
    assert not success
    assert runner.error_message == 'Sleeper was aborted'
