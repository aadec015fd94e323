import networkx as nx

from vexsim.profiles.enums import MemoryAccessMethod
from vexsim.simulation import Simulation
from vexsim.techniques.catalog import CorruptStackReturnAddress, all_techniques


def test_transitions_get_unique_ordinals():
    simulation = Simulation([CorruptStackReturnAddress()])
    assert [t.ordinal for t in simulation.transitions] == [1, 2]
    assert [t.is_root for t in simulation.transitions] == [True, False]
    assert simulation.root_transitions == simulation.transitions[:1]


def test_return_address_graph():
    technique = CorruptStackReturnAddress()
    simulation = Simulation([technique])
    graph = simulation.complete_graph

    assert graph.number_of_nodes() == 3
    assert graph.number_of_edges() == 2
    assert set(nx.get_node_attributes(graph, "symbol").values()) == {
        "w-b?-c?-d?-e?",
        "r-b?-c?-d?-e?",
        "x-b?-c?",
    }
    labels = {data["label"] for _, _, data in graph.edges(data=True)}
    assert labels == {
        "corrupt return address on stack",
        "return from function with corrupted return address",
    }
    assert {data["technique"] for _, _, data in graph.edges(data=True)} == {technique.symbol}


def test_return_address_chain():
    simulation = Simulation([CorruptStackReturnAddress()])
    chains = simulation.get_transition_chains(MemoryAccessMethod.WRITE)

    assert len(chains) == 1
    chain = chains[0]
    assert chain.chain_descriptor == "w->r->x"
    assert chain.from_method == MemoryAccessMethod.WRITE
    assert chain.technique.symbol == "stack_return_address_overwrite"
    assert str(chain) == "corrupt return address on stack [w->r->x]"

    violations = chain.violations
    assert [v.method for v in violations] == [
        MemoryAccessMethod.WRITE,
        MemoryAccessMethod.READ,
        MemoryAccessMethod.EXECUTE,
    ]
    assert violations[0].transitive_violations[0].violation is violations[1]


def test_no_chains_for_unused_method():
    simulation = Simulation([CorruptStackReturnAddress()])
    assert simulation.get_transition_chains(MemoryAccessMethod.READ) == []


def test_batched_registration_explores_full_technique():
    simulation = Simulation()
    simulation.begin_add_transition()
    CorruptStackReturnAddress().add_transitions_to_simulation(simulation)
    assert simulation.complete_graph.number_of_nodes() == 0
    simulation.end_add_transition()
    assert simulation.complete_graph.number_of_edges() == 2


def test_save_graphml(tmp_path):
    simulation = Simulation([CorruptStackReturnAddress()])
    path = simulation.save_graphml(tmp_path / "graphs" / "techniques.graphml")
    assert path.exists()
    loaded = nx.read_graphml(path)
    assert loaded.number_of_nodes() == 3


def test_full_catalog():
    simulation = Simulation.all_techniques()
    ordinals = [t.ordinal for t in simulation.transitions]
    assert len(ordinals) == len(set(ordinals))
    assert len(simulation.transitions) > len(all_techniques())
    assert all(t in simulation.transitions for t in simulation.root_transitions)

    write_chains = simulation.get_transition_chains(MemoryAccessMethod.WRITE)
    assert write_chains
    assert all(chain.chain_descriptor.startswith("w->") for chain in write_chains)
    assert any(chain.chain_descriptor == "w->r->x" for chain in write_chains)
