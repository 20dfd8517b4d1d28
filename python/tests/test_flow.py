import unittest

from burstshark import CaptureMode, FlowOptions, IpFlow, PacketRecord, WlanFlow, create_flow, seq_diff


def _ip(time: float, payload: int, src_port: int = 1, dst_port: int = 2) -> PacketRecord:
    return PacketRecord(
        time=time,
        src="10.0.0.1",
        dst="10.0.0.2",
        payload_len=payload,
        src_port=src_port,
        dst_port=dst_port,
    )


def _frame(time: float, payload: int, seq: int) -> PacketRecord:
    return PacketRecord(
        time=time,
        src="aa:aa:aa:aa:aa:aa",
        dst="bb:bb:bb:bb:bb:bb",
        payload_len=payload,
        seq_number=seq,
    )


class SeqDiffTest(unittest.TestCase):
    def test_signed_difference_wraps_around_sequence_space(self) -> None:
        self.assertEqual(seq_diff(11, 10), 1)
        self.assertEqual(seq_diff(10, 12), -2)
        self.assertEqual(seq_diff(0, 4095), 1)
        self.assertEqual(seq_diff(4095, 0), -1)
        self.assertEqual(seq_diff(2048, 0), 2048)
        self.assertEqual(seq_diff(2049, 0), -2047)


class IpFlowTest(unittest.TestCase):
    def test_first_packet_starts_burst_and_later_packets_extend_it(self) -> None:
        flow = IpFlow()
        self.assertIsNone(flow.current_burst)

        flow.add_packet(_ip(0.0, 100))
        flow.add_packet(_ip(0.3, 200))
        flow.add_packet(_ip(0.6, 100))

        burst = flow.current_burst
        assert burst is not None
        self.assertEqual(burst.start, 0.0)
        self.assertEqual(burst.end, 0.6)
        self.assertEqual(burst.packets, 3)
        self.assertEqual(burst.size, 400)
        self.assertAlmostEqual(burst.duration, 0.6)
        self.assertEqual(burst.flow_key(), ("10.0.0.1", "10.0.0.2", 1, 2))

    def test_reset_clears_burst_and_next_packet_starts_fresh(self) -> None:
        flow = IpFlow()
        flow.add_packet(_ip(0.0, 100))
        emitted = flow.current_burst
        flow.reset_burst()
        self.assertIsNone(flow.current_burst)

        flow.add_packet(_ip(5.0, 10))
        assert flow.current_burst is not None
        self.assertIsNot(flow.current_burst, emitted)
        self.assertEqual(flow.current_burst.start, 5.0)
        self.assertEqual(emitted.packets, 1)


class WlanFlowTest(unittest.TestCase):
    def test_in_order_frames_are_accepted(self) -> None:
        flow = WlanFlow(estimate_missing=True, max_deviation=50)
        flow.add_packet(_frame(0.0, 100, 10))
        flow.add_packet(_frame(0.1, 150, 11))

        burst = flow.current_burst
        assert burst is not None
        self.assertEqual((burst.packets, burst.size, burst.end), (2, 250, 0.1))
        self.assertEqual(flow.expected_seq, 12)
        self.assertEqual(flow.last_payload, 150)

    def test_retransmission_only_extends_burst_end(self) -> None:
        flow = WlanFlow(estimate_missing=True, max_deviation=50)
        flow.add_packet(_frame(0.0, 100, 10))
        flow.add_packet(_frame(0.1, 100, 11))
        flow.add_packet(_frame(0.2, 100, 10))

        burst = flow.current_burst
        assert burst is not None
        self.assertEqual(burst.packets, 2)
        self.assertEqual(burst.size, 200)
        self.assertEqual(burst.end, 0.2)
        self.assertEqual(flow.expected_seq, 12)
        self.assertEqual(flow.last_payload, 100)

    def test_lost_frames_are_estimated_from_neighbouring_sizes(self) -> None:
        flow = WlanFlow(estimate_missing=True, max_deviation=50)
        flow.add_packet(_frame(0.0, 100, 10))
        flow.add_packet(_frame(0.1, 200, 13))

        burst = flow.current_burst
        assert burst is not None
        # Two frames inferred from the jump 11 -> 13, each the mean of 100 and 200.
        self.assertEqual(burst.packets, 3)
        self.assertEqual(burst.size, 100 + 2 * 150)
        self.assertEqual(burst.end, 0.1)
        self.assertEqual(flow.expected_seq, 14)
        self.assertEqual(flow.last_payload, 200)
        self.assertTrue(100 <= burst.size / burst.packets <= 200)

    def test_lost_frames_without_estimation_count_only_the_received_frame(self) -> None:
        flow = WlanFlow(estimate_missing=False, max_deviation=50)
        flow.add_packet(_frame(0.0, 100, 10))
        flow.add_packet(_frame(0.1, 200, 13))

        burst = flow.current_burst
        assert burst is not None
        self.assertEqual((burst.packets, burst.size), (2, 300))
        self.assertEqual(flow.expected_seq, 14)

    def test_outlier_is_dropped_and_expected_number_creeps_forward(self) -> None:
        flow = WlanFlow(estimate_missing=True, max_deviation=50)
        flow.add_packet(_frame(0.0, 100, 10))
        flow.add_packet(_frame(0.1, 999, 500))

        burst = flow.current_burst
        assert burst is not None
        self.assertEqual((burst.packets, burst.size, burst.end), (1, 100, 0.0))
        self.assertEqual(flow.expected_seq, 12)

        flow.add_packet(_frame(0.2, 100, 12))
        self.assertEqual((burst.packets, burst.size, burst.end), (2, 200, 0.2))

    def test_deviation_equal_to_window_is_an_outlier(self) -> None:
        flow = WlanFlow(estimate_missing=True, max_deviation=5)
        flow.add_packet(_frame(0.0, 100, 10))
        flow.add_packet(_frame(0.1, 100, 16))
        flow.add_packet(_frame(0.2, 100, 6))

        burst = flow.current_burst
        assert burst is not None
        self.assertEqual(burst.packets, 1)
        self.assertEqual(burst.end, 0.0)
        self.assertEqual(flow.expected_seq, 13)

    def test_sequence_numbers_wrap_around(self) -> None:
        flow = WlanFlow(estimate_missing=True, max_deviation=50)
        flow.add_packet(_frame(0.0, 100, 4094))
        flow.add_packet(_frame(0.1, 100, 4095))
        flow.add_packet(_frame(0.2, 100, 0))
        self.assertEqual(flow.expected_seq, 1)

        flow.add_packet(_frame(0.3, 300, 3))
        burst = flow.current_burst
        assert burst is not None
        self.assertEqual(burst.packets, 3 + 2)
        self.assertEqual(burst.size, 300 + 2 * 200)
        self.assertEqual(flow.expected_seq, 4)

    def test_new_burst_resynchronises_expected_number(self) -> None:
        flow = WlanFlow(estimate_missing=True, max_deviation=50)
        flow.add_packet(_frame(0.0, 100, 10))
        flow.reset_burst()
        flow.add_packet(_frame(3.0, 80, 2000))

        self.assertEqual(flow.expected_seq, 2001)
        self.assertEqual(flow.last_payload, 80)

    def test_frames_without_sequence_number_are_rejected(self) -> None:
        flow = WlanFlow()
        with self.assertRaises(ValueError):
            flow.add_packet(_ip(0.0, 100))


class CreateFlowTest(unittest.TestCase):
    def test_mode_selects_flow_variant(self) -> None:
        self.assertIsInstance(create_flow(FlowOptions()), IpFlow)

        flow = create_flow(
            FlowOptions(mode=CaptureMode.WLAN, estimate_missing=False, max_deviation=200)
        )
        self.assertIsInstance(flow, WlanFlow)
        assert isinstance(flow, WlanFlow)
        self.assertFalse(flow.estimate_missing)
        self.assertEqual(flow.max_deviation, 200)

    def test_options_validation(self) -> None:
        with self.assertRaises(ValueError):
            FlowOptions(burst_quiet=0)
        with self.assertRaises(ValueError):
            FlowOptions(mode=CaptureMode.WLAN, port_aggregation=True)
        with self.assertRaises(ValueError):
            FlowOptions(max_deviation=70_000)
        self.assertIs(FlowOptions(mode="wlan").mode, CaptureMode.WLAN)


if __name__ == "__main__":  # pragma: no cover - convenience
    unittest.main()
