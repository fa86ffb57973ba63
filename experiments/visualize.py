from __future__ import annotations

from typing import Optional, Sequence

import matplotlib.pyplot as plt
import networkx as nx

from procurement.models import EdgeRelation


def plot_account_network(G: nx.DiGraph, highlight: Optional[Sequence[str]] = None, *, show: bool = True):
    """Draws accounts colored by level; `highlight` is a node sequence drawn in red."""
    pos = nx.spring_layout(G, seed=7)
    levels = [int(G.nodes[n]["level"]) for n in G.nodes]

    fig = plt.figure(figsize=(9, 7))

    nx.draw_networkx_nodes(G, pos, node_color=levels, cmap=plt.cm.viridis, node_size=350)
    team = [(u, v) for u, v, d in G.edges(data=True) if d["relation"] == EdgeRelation.TEAM]
    supply = [(u, v) for u, v, d in G.edges(data=True) if d["relation"] == EdgeRelation.SUPPLY]
    nx.draw_networkx_edges(G, pos, edgelist=team, alpha=0.5, arrows=True)
    nx.draw_networkx_edges(G, pos, edgelist=supply, alpha=0.3, style="dashed", arrows=True)
    if highlight and len(highlight) > 1:
        hops = list(zip(highlight, highlight[1:]))
        nx.draw_networkx_edges(G, pos, edgelist=hops, edge_color="red", width=2.5, arrows=True)
    nx.draw_networkx_labels(G, pos, font_size=8)

    plt.title("Procurement Network (color = level, dashed = supplier link)")
    plt.axis("off")
    plt.tight_layout()
    if show:
        plt.show()
    return fig
