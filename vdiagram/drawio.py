"""Draw.io (mxGraph) document builder and writer."""
import html
import logging
import xml.etree.ElementTree as ET
from pathlib import Path
from typing import Dict, List, Sequence

from .models import DiagramEdge, DiagramNode
from .storage import write_atomic

logger = logging.getLogger(__name__)

ROOT_LAYER_ID = "0"
DEFAULT_LAYER_ID = "1"

PAGE_WIDTH = 1169
PAGE_HEIGHT = 827

EDGE_STYLE = "endArrow=none;html=1;rounded=0;strokeColor=#666666;"


class DiagramBuilder:
    """Accumulates nodes and edges for a single diagram.

    One counter hands out ids to both nodes and edges, so every id in the
    document is unique. Ids 0 and 1 are the mandatory base layer cells.
    """

    def __init__(self, name: str = "Page-1", html_labels: bool = True):
        self.name = name
        self.html_labels = html_labels
        self.nodes: List[DiagramNode] = []
        self.edges: List[DiagramEdge] = []
        self._next_id = 2
        # Dedup caches keyed by "host|switch" and "host|switch|portgroup".
        self.switch_nodes: Dict[str, str] = {}
        self.portgroup_nodes: Dict[str, str] = {}

    def next_id(self) -> str:
        cell_id = str(self._next_id)
        self._next_id += 1
        return cell_id

    def label(self, lines: Sequence[str]) -> str:
        """Join label lines for the configured label flavour."""
        parts = [str(line) for line in lines if line is not None and str(line) != ""]
        # Single-line labels stay plain text here; add_node/add_edge escape them for html=1 styles.
        if self.html_labels and len(parts) > 1:
            return "<br>".join(html.escape(p, quote=False) for p in parts)
        return "\n".join(parts)

    def _style_for(self, label: str, style: str) -> str:
        has_breaks = "<br>" in label or "\n" in label
        if self.html_labels and has_breaks and "html=1" not in style:
            style = f"{style.rstrip(';')};html=1;"
        return style

    @staticmethod
    def _cell_text(label: str, style: str) -> str:
        """Escape a plain-text label placed in a cell whose style renders HTML."""
        if "html=1" not in style or "<br>" in label:
            return label
        return "<br>".join(html.escape(part, quote=False) for part in label.split("\n"))

    def add_node(
        self,
        label: str,
        style: str,
        x: int,
        y: int,
        width: int,
        height: int,
        parent: str = DEFAULT_LAYER_ID,
    ) -> str:
        style = self._style_for(label, style)
        node = DiagramNode(
            id=self.next_id(),
            label=self._cell_text(label, style),
            style=style,
            x=int(x),
            y=int(y),
            width=int(width),
            height=int(height),
            parent=parent,
        )
        self.nodes.append(node)
        return node.id

    def add_edge(self, source: str, target: str, label: str = "", style: str = EDGE_STYLE) -> str:
        edge = DiagramEdge(
            id=self.next_id(),
            source=source,
            target=target,
            label=self._cell_text(label, style),
            style=style,
            parent=DEFAULT_LAYER_ID,
        )
        self.edges.append(edge)
        return edge.id

    def to_element(self) -> ET.Element:
        mxfile = ET.Element("mxfile", attrib={"host": "vdiagram", "type": "device"})
        diagram = ET.SubElement(mxfile, "diagram", attrib={"id": "vdiagram-1", "name": self.name})
        model = ET.SubElement(
            diagram,
            "mxGraphModel",
            attrib={
                "dx": "1422",
                "dy": "794",
                "grid": "1",
                "gridSize": "10",
                "guides": "1",
                "tooltips": "1",
                "connect": "1",
                "arrows": "1",
                "fold": "1",
                "page": "1",
                "pageScale": "1",
                "pageWidth": str(PAGE_WIDTH),
                "pageHeight": str(PAGE_HEIGHT),
                "math": "0",
                "shadow": "0",
            },
        )
        root = ET.SubElement(model, "root")
        ET.SubElement(root, "mxCell", attrib={"id": ROOT_LAYER_ID})
        ET.SubElement(root, "mxCell", attrib={"id": DEFAULT_LAYER_ID, "parent": ROOT_LAYER_ID})

        for node in self.nodes:
            cell = ET.SubElement(
                root,
                "mxCell",
                attrib={
                    "id": node.id,
                    "value": node.label,
                    "style": node.style,
                    "vertex": "1",
                    "parent": node.parent,
                },
            )
            ET.SubElement(
                cell,
                "mxGeometry",
                attrib={
                    "x": str(node.x),
                    "y": str(node.y),
                    "width": str(node.width),
                    "height": str(node.height),
                    "as": "geometry",
                },
            )

        for edge in self.edges:
            cell = ET.SubElement(
                root,
                "mxCell",
                attrib={
                    "id": edge.id,
                    "value": edge.label,
                    "style": edge.style,
                    "edge": "1",
                    "parent": edge.parent,
                    "source": edge.source,
                    "target": edge.target,
                },
            )
            ET.SubElement(cell, "mxGeometry", attrib={"relative": "1", "as": "geometry"})

        return mxfile

    def to_xml(self) -> bytes:
        return ET.tostring(self.to_element(), encoding="utf-8", xml_declaration=True)

    def write(self, output_path: Path) -> Path:
        """Serialize and persist the diagram. Nothing is left at output_path on failure."""
        payload = self.to_xml()
        path = write_atomic(Path(output_path), payload)
        logger.info(
            "Wrote diagram %s (%s shapes, %s connectors)",
            path,
            len(self.nodes),
            len(self.edges),
        )
        return path

