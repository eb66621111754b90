import logging

from sdrflow.logsetup import init


def test_init_installs_once_and_prints(capsys):
    init()
    capsys.readouterr()
    assert init() is False
    assert "logger already initialized" in capsys.readouterr().out

    logger = logging.getLogger("sdrflow")
    assert logger.propagate is False
    logger.error("boom")
    assert "sdrflow: ERROR - boom" in capsys.readouterr().out


def test_child_loggers_use_handler(capsys):
    init()
    capsys.readouterr()
    logging.getLogger("sdrflow.child").warning("careful")
    assert "sdrflow: WARN - careful" in capsys.readouterr().out