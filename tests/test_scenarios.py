import pytest

from sharevault import scenarios


@pytest.mark.parametrize("name", sorted(scenarios.SCENARIOS))
def test_each_scenario_holds(name):
    assert scenarios.run([name]) == 0


def test_cli_runs_all_scenarios(capsys):
    assert scenarios.main(["all"]) == 0
    output = capsys.readouterr().out
    assert "5/5 scenarios passed." in output
    assert "FAILED" not in output


def test_cli_reports_failures(monkeypatch, capsys):
    def broken():
        scenarios.expect(False, "deliberately broken")

    monkeypatch.setitem(scenarios.SCENARIOS, "basic", broken)
    assert scenarios.main(["basic"]) == 1
    assert "FAILED: deliberately broken" in capsys.readouterr().out


def test_cli_rejects_unknown_scenario():
    with pytest.raises(SystemExit):
        scenarios.main(["nope"])
