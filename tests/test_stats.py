from nachosim.stats import SYSTEM_TICK, USER_TICK, Statistics


def test_new_statistics_start_at_zero():
    stats = Statistics()
    assert stats.total_ticks == 0
    assert stats.num_disk_reads == 0
    assert stats.num_packets_recvd == 0


def test_report_of_fresh_statistics():
    report = Statistics().report()
    assert report.splitlines() == [
        "Ticks: total 0, idle 0, system 0, user 0",
        "Disk I/O: reads 0, writes 0",
        "Console I/O: reads 0, writes 0",
        "Paging: faults 0",
        "Network I/O: packets received 0, sent 0",
    ]


def test_report_reflects_counters():
    stats = Statistics(total_ticks=SYSTEM_TICK, system_ticks=SYSTEM_TICK)
    stats.num_packets_recvd = 3
    stats.num_packets_sent = 4
    lines = stats.report().splitlines()
    assert lines[0] == f"Ticks: total {SYSTEM_TICK}, idle 0, system {SYSTEM_TICK}, user 0"
    assert lines[-1] == "Network I/O: packets received 3, sent 4"


def test_report_user_ticks_and_console_counts():
    stats = Statistics(total_ticks=USER_TICK, user_ticks=USER_TICK)
    stats.num_console_chars_read = 6
    stats.num_console_chars_written = 8
    stats.num_page_faults = 2
    lines = stats.report().splitlines()
    assert lines[0] == f"Ticks: total {USER_TICK}, idle 0, system 0, user {USER_TICK}"
    assert lines[2] == "Console I/O: reads 6, writes 8"
    assert lines[3] == "Paging: faults 2"


def test_print_report_writes_report(capsys):
    stats = Statistics(num_disk_reads=2, num_disk_writes=5)
    stats.print_report()
    out = capsys.readouterr().out
    assert out == stats.report()
    assert "Disk I/O: reads 2, writes 5" in out