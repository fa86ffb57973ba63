import pytest

from procurement.errors import InconsistentDataError, NetworkNotBuiltError
from procurement.models import AccountRecord, AccountStatus, EdgeRelation, UserLevel
from procurement.network_builder import NetworkBuilder, NetworkSnapshot, build_procurement_graph


def test_snapshot_before_build_raises(chain_store):
    builder = NetworkBuilder(chain_store)
    assert builder.is_built is False
    with pytest.raises(NetworkNotBuiltError):
        builder.snapshot
    assert builder.health_check()["healthy"] is False


def test_build_graph_edges_and_team_paths(chain_store):
    builder = NetworkBuilder(chain_store)
    snap = builder.build_graph()

    assert snap.version == 1
    assert snap.node_count == 5
    # 3 team edges plus the B1 -> X1 supplier link
    assert snap.edge_count == 4
    assert snap.edge("B1", "T1")["relation"] == EdgeRelation.TEAM
    assert snap.edge("B1", "X1")["relation"] == EdgeRelation.SUPPLY
    assert snap.edge("T2", "D1")["hop_cost"] == 2.0
    assert snap.account("B1")["team_path"] == "D1/T2/T1/B1"
    assert snap.upline("B1") == ["T1", "T2", "D1"]
    assert snap.hop_offer("T1", "T2", "P1") == (90.0, 8, 1.0)
    assert snap.hop_offer("T2", "D1", "P3") == (None, 0, 2.0)
    assert sorted(snap.holders_of("P1", 10)) == ["D1", "X1"]
    assert snap.products() == {"P1", "P2"}
    assert builder.health_check()["healthy"] is True


def test_unknown_parent_is_inconsistent():
    with pytest.raises(InconsistentDataError):
        build_procurement_graph([AccountRecord(account_id="B1", parent_id="ghost")])


def test_duplicate_account_is_inconsistent():
    with pytest.raises(InconsistentDataError):
        build_procurement_graph([AccountRecord(account_id="A"), AccountRecord(account_id="A")])


def test_team_cycle_is_inconsistent():
    records = [
        AccountRecord(account_id="A", parent_id="B"),
        AccountRecord(account_id="B", parent_id="C"),
        AccountRecord(account_id="C", parent_id="A"),
    ]
    with pytest.raises(InconsistentDataError) as exc_info:
        build_procurement_graph(records)
    assert set(exc_info.value.details["cycle"]) == {"A", "B", "C"}


def test_failed_rebuild_keeps_last_good_snapshot(chain_store):
    builder = NetworkBuilder(chain_store)
    first = builder.build_graph()
    chain_store.update("T1", parent_id="nobody")

    with pytest.raises(InconsistentDataError):
        builder.build_graph()
    assert builder.snapshot is first
    assert builder.last_error
    assert builder.health_check()["healthy"] is False


def test_incremental_update_refreshes_stock_on_in_edges(chain_store):
    builder = NetworkBuilder(chain_store)
    old = builder.build_graph()
    chain_store.set_stock("T2", "P1", 1)
    chain_store.set_price("T2", "P1", 95.0)

    new = builder.incremental_update(["T2"])

    assert new.version == 2
    assert new is not old
    assert new.hop_offer("T1", "T2", "P1") == (95.0, 1, 1.0)
    # readers of the old snapshot keep their view
    assert old.hop_offer("T1", "T2", "P1") == (90.0, 8, 1.0)


def test_incremental_update_moves_downline(chain_store):
    builder = NetworkBuilder(chain_store)
    builder.build_graph()
    chain_store.update("T1", parent_id="D1", level=UserLevel.STAR_1)

    snap = builder.incremental_update(["T1"])

    assert not snap.are_connected("T1", "T2")
    assert snap.edge("T1", "D1")["relation"] == EdgeRelation.TEAM
    assert snap.account("T1")["team_path"] == "D1/T1"
    assert snap.account("B1")["team_path"] == "D1/T1/B1"


def test_incremental_update_adds_and_removes_accounts(chain_store):
    builder = NetworkBuilder(chain_store)
    builder.build_graph()
    chain_store.add(AccountRecord(account_id="B2", parent_id="T2", level=UserLevel.NORMAL))
    chain_store.remove("X1")
    chain_store.update("B1", supplier_links={})

    snap = builder.incremental_update(["B2", "X1", "B1"])

    assert snap.has_account("B2")
    assert not snap.has_account("X1")
    assert snap.account("B2")["team_path"] == "D1/T2/B2"
    assert snap.suppliers_of("B1") == ["T1"]


def test_incremental_update_rejects_orphans(chain_store):
    builder = NetworkBuilder(chain_store)
    first = builder.build_graph()
    chain_store.remove("T1")

    with pytest.raises(InconsistentDataError):
        builder.incremental_update(["T1"])
    assert builder.snapshot is first


def test_procurement_view_filters(chain_store):
    chain_store.update("T1", status=AccountStatus.SUSPENDED)
    snap = NetworkBuilder(chain_store).build_graph()

    view = snap.procurement_view(team_only=True, allow_cross_level=False)
    assert "T1" not in view
    assert not view.has_edge("B1", "X1")

    open_view = snap.procurement_view(team_only=False, allow_cross_level=False, exclude_inactive=False)
    assert open_view.has_edge("B1", "X1")
    assert open_view.has_edge("B1", "T1")

    assert "D1" not in snap.procurement_view(team_only=True, allow_cross_level=False, excluded=["D1"])


def test_level_rule_blocks_downward_hops():
    records = [
        AccountRecord(account_id="HI", level=UserLevel.STAR_5, supplier_links={"LO": 1.0}),
        AccountRecord(account_id="LO", level=UserLevel.VIP, prices={"P1": 5.0}, stock={"P1": 5}),
    ]
    snap = NetworkSnapshot(build_procurement_graph(records), version=1)
    assert not snap.procurement_view(team_only=False, allow_cross_level=False).has_edge("HI", "LO")
    assert snap.procurement_view(team_only=False, allow_cross_level=True).has_edge("HI", "LO")
