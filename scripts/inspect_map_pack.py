import argparse
from pathlib import Path

from mergesplit.algos.counties import county_ids, max_county_pieces
from mergesplit.algos.graph_store import GraphStore
from mergesplit.data.map_pack import load_map_pack

ap = argparse.ArgumentParser()
ap.add_argument("pack_dir", type=Path)
ap.add_argument("--pop_col", default="pop")
args = ap.parse_args()

pack = load_map_pack(args.pack_dir, pop_col=args.pop_col, load_shapes=False)

print("Units in attributes:", len(pack.ids))
print("Adjacency keys:", len(pack.adj_ids))
print("Sample unit_id:", pack.ids[0], "| neighbors:", len(pack.adj[0]))
print("Total population:", int(pack.pop.sum()))

print("\nDisconnected units (0 neighbors):", sum(len(v) == 0 for v in pack.adj))

graph = GraphStore.from_adjacency(pack.adj, pack.pop, require_connected=False)
print("Graph connected:", graph.is_connected(), "| edges:", len(graph.edges))
if pack.counties is not None:
    ids = county_ids(pack.counties)
    print(f"Counties: {int(ids.max())} | max pieces per county: {max_county_pieces(graph.adj, ids)}")
