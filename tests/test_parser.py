import re

from nonebot_plugin_q3check.data_source import PROTOCOLS, Protocols
from nonebot_plugin_q3check.parser import (
    detect_status_variant,
    is_valid_player,
    parse_info_players,
    parse_key_values,
    parse_status_players,
    sanitize_command,
    split_status_row,
    tokenize,
)

MOH = PROTOCOLS[Protocols.MEDAL_OF_HONOR.value]
COD = PROTOCOLS[Protocols.CALL_OF_DUTY.value]

COD_STATUS = (
    "\nmap: mp_crash\n"
    "num score ping guid                             name            lastmsg address               qport rate\n"
    "--- ----- ---- -------------------------------- --------------- ------- --------------------- ----- -----\n"
    "  0    10   48 0123456789abcdef0123456789abcdef Player One^7          0 192.168.1.10:28960    1234 25000\n"
    "  1    -5  999 fedcba9876543210fedcba9876543210 ^1Red^7Dragon^7      50 10.0.0.2:28960        5678 5000\n"
    "\n"
)

COD_STEAM_STATUS = (
    "\nhostname: My CoD Server\n"
    "version : 1.0\n"
    "udp/ip  : 1.2.3.4:28960\n"
    "os      : Windows\n"
    "type    : dedicated\n"
    "num score ping playerid steamid name lastmsg address qport rate\n"
    "--- ----- ---- -------- ------- ---- ------- ------- ----- ----\n"
    "  3    7   60 1 76561198000000000 Steam Guy^7    0 5.6.7.8:28960 4321 25000\n"
)

MOH_STATUS = (
    "\nmap: obj/obj_team2\n"
    "num score ping name            lastmsg address               qport rate\n"
    "--- ----- ---- --------------- ------- --------------------- ----- -----\n"
    "  0     0   35 Big Boss              0 192.168.0.5:12203     8765 20000\n"
    "  1     3   80 Hero^7 xx            10 192.168.0.6:12203     1111 20000\n"
)


def test_tokenize_keeps_quoted_spans():
    assert tokenize('  3  "Big Boss"  ') == ["3", '"Big Boss"']
    assert tokenize('7 42 "Hero"') == ["7", "42", '"Hero"']


def test_tokenize_empty_and_unterminated():
    assert tokenize("") == []
    assert tokenize("   ") == []
    assert tokenize('1 "never closed name') == ["1", '"never closed name']


def test_sanitize_command_removes_separators():
    assert sanitize_command("rcon say hi;quit\r\n") == "rcon say hiquit"
    assert sanitize_command(";\n\r") == ""


def test_sanitize_command_is_idempotent():
    for command in ("getstatus", "rcon map mp_harbor;", "rcon say\n;\rx"):
        once = sanitize_command(command)
        assert sanitize_command(once) == once
        assert not set(";\r\n") & set(once)


def test_parse_key_values():
    body = "\n\n\\sv_hostname\\My Server\\mapname\\obj/obj_team2\n3 \"Hero\"\n"
    assert parse_key_values(body) == {"sv_hostname": "My Server", "mapname": "obj/obj_team2"}


def test_parse_key_values_skips_empty_key():
    assert parse_key_values("\\\\lost\\k\\v2") == {"k": "v2"}


def test_parse_key_values_duplicate_key_last_wins():
    assert parse_key_values("\\a\\1\\a\\2") == {"a": "2"}


def test_parse_key_values_partial():
    assert parse_key_values("\\key") == {}
    assert parse_key_values("\\a\\1\\broken") == {"a": "1"}
    assert parse_key_values("no pairs here") == {}
    assert parse_key_values("") == {}


def test_parse_key_values_round_trip():
    info = {"sv_hostname": "^1Red ^7Server", "g_gametype": "tdm", "sv_maxclients": "24", "empty": ""}
    wire = "".join(f"\\{key}\\{value}" for key, value in info.items())
    assert parse_key_values("\n" + wire + "\n") == info
    assert parse_key_values("") == {}


def test_parse_info_players_medal_of_honor():
    body = '\n\\sv_hostname\\Test\n3 "Hero"\n4 "Big Boss"\nx "Bad Slot"\n5 Unquoted\n'
    assert parse_info_players(body, MOH.info_layout) == [
        {"slot": "3", "name": "Hero", "score": "0", "ping": "0"},
        {"slot": "4", "name": "Big Boss", "score": "0", "ping": "0"},
    ]


def test_parse_info_players_call_of_duty():
    body = '\n\\sv_hostname\\Test\n7 42 "Hero"\n-3 20 "^1Neg ^7Score"\n-x 42 "Bad"\n5 abc "Bad"\n5 10\n'
    assert parse_info_players(body, COD.info_layout) == [
        {"score": "7", "ping": "42", "name": "Hero", "slot": "0"},
        {"score": "-3", "ping": "20", "name": "^1Neg ^7Score", "slot": "0"},
    ]


def test_parse_info_players_without_blank_line():
    body = '\\sv_hostname\\Test\r\n1 "One"\r\n'
    assert parse_info_players(body, MOH.info_layout) == [
        {"slot": "1", "name": "One", "score": "0", "ping": "0"}
    ]


def test_detect_status_variant():
    assert detect_status_variant(COD_STATUS) is False
    assert detect_status_variant(COD_STEAM_STATUS) is True
    assert detect_status_variant("\nNUM SCORE PING PLAYERID STEAMID NAME\n") is True
    assert detect_status_variant("nothing useful\n") is False


def test_guid_header_forces_non_steam_layout():
    body = (
        "\nnum score ping guid name lastmsg address qport rate\n"
        "--- ----- ---- ---- ---- ------- ------- ----- ----\n"
        "hostname: looks like steam\n"
        "  0 1 2 abc Name^7 0 1.2.3.4:28960 1 25000\n"
    )
    assert detect_status_variant(body) is False
    players = parse_status_players(body, COD.status_layouts)
    assert players == [
        {
            "slot": "0",
            "score": "1",
            "ping": "2",
            "guid": "abc",
            "name": "Name^7",
            "lastmsg": "0",
            "address": "1.2.3.4:28960",
            "qport": "1",
            "rate": "25000",
        }
    ]


def test_parse_status_players_call_of_duty():
    players = parse_status_players(COD_STATUS, COD.status_layouts)
    assert [p["name"] for p in players] == ["Player One^7", "^1Red^7Dragon^7"]
    assert players[1] == {
        "slot": "1",
        "score": "-5",
        "ping": "999",
        "guid": "fedcba9876543210fedcba9876543210",
        "name": "^1Red^7Dragon^7",
        "lastmsg": "50",
        "address": "10.0.0.2:28960",
        "qport": "5678",
        "rate": "5000",
    }


def test_parse_status_players_steam():
    assert parse_status_players(COD_STEAM_STATUS, COD.status_layouts) == [
        {
            "slot": "3",
            "score": "7",
            "ping": "60",
            "playerid": "1",
            "steamid": "76561198000000000",
            "name": "Steam Guy^7",
            "lastmsg": "0",
            "address": "5.6.7.8:28960",
            "qport": "4321",
            "rate": "25000",
        }
    ]


def test_parse_status_players_medal_of_honor():
    players = parse_status_players(MOH_STATUS, MOH.status_layouts)
    assert players[0] == {
        "slot": "0",
        "score": "0",
        "ping": "35",
        "name": "Big Boss",
        "lastmsg": "0",
        "address": "192.168.0.5:12203",
        "qport": "8765",
        "rate": "20000",
    }
    # no colour reset rule for Medal of Honor
    assert players[1]["name"] == "Hero^7 xx"
    assert players[1]["lastmsg"] == "10"


def test_split_status_row_drops_text_after_colour_reset():
    line = "2 0 100 abcd Hero^7 ~~ 0 1.2.3.4:28960 111 25000"
    assert split_status_row(line, COD.status_layouts[False]) == [
        "2", "0", "100", "abcd", "Hero^7", "0", "1.2.3.4:28960", "111", "25000",
    ]


def test_colour_reset_inside_or_leading_keeps_whole_name():
    body = (
        "\nmap: mp_crash\n"
        "  0 1 2 abc ^1Red^7Dragon 0 1.2.3.4:28960 1 25000\n"
        "  1 1 2 abc ^7Big Boss 0 1.2.3.4:28960 1 25000\n"
        "  2 1 2 abc ^7Big^7 Boss^7 ~~ 0 1.2.3.4:28960 1 25000\n"
    )
    players = parse_status_players(body, COD.status_layouts)
    assert [p["name"] for p in players] == ["^1Red^7Dragon", "^7Big Boss", "^7Big^7 Boss^7"]
    assert all(p["lastmsg"] == "0" for p in players)


def test_split_status_row_rate_takes_rest_of_line():
    line = "0 1 2 Name 0 1.2.3.4:12203 5 25000 extra"
    fields = split_status_row(line, MOH.status_layouts[False])
    assert fields[-1] == "25000 extra"
    assert len(fields) == 8


def test_parse_status_players_drops_short_and_invalid_rows():
    body = (
        "\nmap: mp_crash\n"
        "  0 1 2 abc Short^7\n"
        "  x 1 2 abc Name^7 0 1.2.3.4:28960 1 25000\n"
        "  1 1- 2 abc Name^7 0 1.2.3.4:28960 1 25000\n"
        "  2 1 2 abc Good^7 0 1.2.3.4:28960 1 25000\n"
    )
    players = parse_status_players(body, COD.status_layouts)
    assert [p["slot"] for p in players] == ["2"]


def test_emitted_players_respect_numeric_invariants():
    players = (
        parse_status_players(COD_STATUS, COD.status_layouts)
        + parse_status_players(MOH_STATUS, MOH.status_layouts)
        + parse_info_players('7 42 "a"\n-1 0 "b"\n', COD.info_layout)
    )
    assert players
    for player in players:
        assert re.fullmatch(r"[0-9]+", player["slot"])
        assert re.fullmatch(r"(-?[0-9]+)?", player["score"])
        assert re.fullmatch(r"[0-9]*", player["ping"])


def test_is_valid_player():
    assert is_valid_player({"slot": "1", "score": "", "ping": ""})
    assert is_valid_player({"slot": "1", "score": "-20", "ping": "5"})
    assert not is_valid_player({"slot": "", "score": "1", "ping": "1"})
    assert not is_valid_player({"slot": "1", "score": "-", "ping": "1"})
    assert not is_valid_player({"slot": "1", "score": "1", "ping": "-1"})
