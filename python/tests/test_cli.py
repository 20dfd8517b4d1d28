from __future__ import annotations

import socket

import dpkt
import pytest

from burstshark.cli import build_parser, main


def _build_cli_sample_pcap(path) -> None:
    with path.open("wb") as fh:
        writer = dpkt.pcap.Writer(fh)
        for ts, size in ((10.0, 120), (10.1, 80), (15.0, 50)):
            udp = dpkt.udp.UDP(sport=40000, dport=443, ulen=8 + size)
            udp.data = b"\x00" * size
            ip = dpkt.ip.IP(
                src=socket.inet_aton("198.51.100.7"),
                dst=socket.inet_aton("203.0.113.9"),
                p=dpkt.ip.IP_PROTO_UDP,
                ttl=64,
            )
            ip.data = udp
            ip.len = 20 + len(bytes(udp))
            ethernet = dpkt.ethernet.Ethernet(
                src=b"\xaa\xaa\xaa\xaa\xaa\xaa",
                dst=b"\xbb\xbb\xbb\xbb\xbb\xbb",
                type=dpkt.ethernet.ETH_TYPE_IP,
                data=ip,
            )
            writer.writepkt(bytes(ethernet), ts=ts)
        writer.close()


def test_cli_writes_bursts_to_file(tmp_path):
    pcap_path = tmp_path / "sample.pcap"
    _build_cli_sample_pcap(pcap_path)
    output_file = tmp_path / "out" / "bursts.txt"

    exit_code = main(
        [
            "--decoder",
            "dpkt",
            "-r",
            str(pcap_path),
            "--flush-on-eof",
            "-W",
            str(output_file),
            "-q",
        ]
    )

    assert exit_code == 0
    lines = output_file.read_text(encoding="utf-8").splitlines()
    assert len(lines) == 2

    first = lines[0].split()
    assert first[0] == "1"
    assert first[2:6] == ["198.51.100.7", "40000", "203.0.113.9", "443"]
    assert first[6] == "0.000000000"
    assert first[9:] == ["2", "200"]
    assert lines[1].split()[9:] == ["1", "50"]


def test_cli_applies_size_filter(tmp_path, capsys):
    pcap_path = tmp_path / "sample.pcap"
    _build_cli_sample_pcap(pcap_path)

    exit_code = main(["--decoder", "dpkt", "-r", str(pcap_path), "--flush-on-eof", "-b", "100"])

    assert exit_code == 0
    printed = capsys.readouterr().out.splitlines()
    assert len(printed) == 1
    assert printed[0].split()[-1] == "200"


def test_cli_without_flush_drops_trailing_burst(tmp_path, capsys):
    pcap_path = tmp_path / "sample.pcap"
    _build_cli_sample_pcap(pcap_path)

    assert main(["--decoder", "dpkt", "-r", str(pcap_path)]) == 0
    printed = capsys.readouterr().out.splitlines()
    assert [line.split()[-1] for line in printed] == ["200"]


@pytest.mark.parametrize(
    "argv",
    [
        ["-r", "cap.pcap", "-i", "eth0"],
        ["-r", "cap.pcap", "-f", "port 53"],
        ["-Y", "udp"],
        ["-p", "-I"],
        ["-G"],
        ["-M", "10"],
        ["--decoder", "dpkt"],
        ["--decoder", "dpkt", "-r", "cap.pcap", "-I"],
        ["-b", "-1"],
    ],
)
def test_cli_rejects_conflicting_options(argv):
    with pytest.raises(SystemExit) as excinfo:
        main(argv)
    assert excinfo.value.code == 2


def test_parser_defaults():
    args = build_parser().parse_args([])
    assert args.burst_quiet == 1.0
    assert args.time_format == "relative"
    assert args.max_deviation is None
    assert args.filter == []


def test_cli_reports_missing_tshark(tmp_path):
    exit_code = main(["-r", str(tmp_path / "cap.pcap"), "--tshark-bin", str(tmp_path / "no-tshark")])
    assert exit_code == 1


def test_cli_reports_unwritable_burst_file(tmp_path):
    pcap_path = tmp_path / "sample.pcap"
    _build_cli_sample_pcap(pcap_path)

    exit_code = main(["--decoder", "dpkt", "-r", str(pcap_path), "-W", str(tmp_path), "-q"])

    assert exit_code == 1
