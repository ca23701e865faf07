"""
Unit Tests for CSV Ingestion

Tests:
- Required-column checks raise typed rejections
- Cells parse into typed entities (timestamps, flags, params)
- Unparseable cells become None instead of failing the file
"""

import io

import pytest

from pltv_workbench.exceptions import InputValidationError
from pltv_workbench.ingestion import parse_params, read_events, read_payments, read_players

PLAYERS_CSV = """user_id,install_time,channel,campaign_id,country,os,consent_tracking,device_tier
u1,2024-10-01T10:00:00Z,facebook,camp_1,VN,android,true,HIGH
u2,2024-10-02T08:30:00+07:00,organic,,TH,ios,false,weird
"""

EVENTS_CSV = """user_id,event_name,event_time,session_id,params
u1,level_up,2024-10-01T11:00:00Z,s1,level=5;mode=ranked
u1,session_start,not-a-time,s1,
,chat_message,2024-10-01T12:00:00Z,,
"""


class TestRequiredColumns:
    """Files missing required headers are rejected before the pipeline runs"""

    def test_missing_player_columns(self):
        csv = "user_id,install_time\nu1,2024-10-01T00:00:00Z\n"
        with pytest.raises(InputValidationError) as exc:
            read_players(io.StringIO(csv))
        assert "channel" in exc.value.details["missing"]
        assert exc.value.details["kind"] == "players"

    def test_empty_file(self):
        with pytest.raises(InputValidationError):
            read_events(io.StringIO(""))

    def test_header_only(self):
        with pytest.raises(InputValidationError):
            read_events(io.StringIO("user_id,event_name,event_time,session_id\n"))


class TestParsing:
    """Valid files parse into typed entities"""

    def test_players(self):
        players = read_players(io.StringIO(PLAYERS_CSV))
        assert [p.user_id for p in players] == ["u1", "u2"]
        assert players[0].consent_tracking is True
        assert players[1].consent_tracking is False
        assert players[0].device_tier == "high"
        assert players[1].device_tier == "mid"
        assert players[1].install_time.utcoffset().total_seconds() == 7 * 3600

    def test_events_keep_bad_cells_as_none(self):
        events = read_events(io.StringIO(EVENTS_CSV))
        assert len(events) == 3
        assert events[0].params == {"level": 5.0, "mode": "ranked"}
        assert events[1].event_time is None
        assert events[2].user_id is None
        assert events[2].session_id is None

    def test_payments_accept_legacy_amount_column(self):
        csv = ("user_id,txn_time,amount_usd,is_refund\n"
               "u1,2024-10-01T12:00:00Z,4.99,false\n"
               "u1,2024-10-02T12:00:00Z,9.99,TRUE\n"
               "u2,2024-10-02T12:00:00Z,oops,false\n")
        payments = read_payments(io.StringIO(csv))
        assert [p.amount for p in payments] == [4.99, 9.99]
        assert payments[0].currency == "USD"
        assert payments[1].is_refund is True

    def test_parse_params(self):
        assert parse_params("a=1;b=x;broken;=3") == {"a": 1.0, "b": "x"}
        assert parse_params(None) == {}
