"""
Builds small but structurally complete .pptx packages for tests.
"""

import io
import zipfile
from pathlib import Path
from typing import Dict, List, Optional

from PIL import Image

P_NS = "http://schemas.openxmlformats.org/presentationml/2006/main"
R_NS = "http://schemas.openxmlformats.org/officeDocument/2006/relationships"
REL_NS = "http://schemas.openxmlformats.org/package/2006/relationships"
CT_NS = "http://schemas.openxmlformats.org/package/2006/content-types"

RT = R_NS + "/"
PML_CT = "application/vnd.openxmlformats-officedocument.presentationml."

MEDIA_CONTENT_TYPES = {
    "tiff": "image/tiff",
    "tif": "image/tiff",
    "bmp": "image/bmp",
    "png": "image/png",
    "jpeg": "image/jpeg",
}

XML_DECL = '<?xml version="1.0" encoding="UTF-8" standalone="yes"?>\n'


def image_bytes(fmt: str, size=(8, 8), color=(200, 30, 30)) -> bytes:
    out = io.BytesIO()
    Image.new("RGB", size, color).save(out, format=fmt)
    return out.getvalue()


def tiff_bytes(**kwargs) -> bytes:
    return image_bytes("TIFF", **kwargs)


def _rels(entries) -> bytes:
    body = "".join(
        f'<Relationship Id="{rid}" Type="{RT}{rtype}" Target="{target}"/>'
        for rid, rtype, target in entries
    )
    return (XML_DECL + f'<Relationships xmlns="{REL_NS}">{body}</Relationships>').encode()


def _part(root: str, inner: str = "") -> bytes:
    return (XML_DECL + f'<p:{root} xmlns:p="{P_NS}" xmlns:r="{R_NS}">'
            f'<p:cSld/>{inner}</p:{root}>').encode()


def build_package(path: Path,
                  slide_layouts: List[int],
                  layout_masters: Dict[int, int],
                  slide_images: Optional[Dict[int, List[str]]] = None,
                  layout_images: Optional[Dict[int, List[str]]] = None,
                  master_images: Optional[Dict[int, List[str]]] = None,
                  media: Optional[Dict[str, bytes]] = None,
                  extra_entries: Optional[Dict[str, bytes]] = None) -> Path:
    """
    Write a package to path.

    slide_layouts[i] is the layout used by slide i+1; layout_masters maps each
    layout number to its master. *_images map a part number to media file
    names under ppt/media/. media maps file names to bytes.
    """
    slide_images = slide_images or {}
    layout_images = layout_images or {}
    master_images = master_images or {}
    media = media or {}
    masters = sorted(set(layout_masters.values()))
    slides = range(1, len(slide_layouts) + 1)

    entries = {}

    # Content types
    defaults = {"rels": "application/vnd.openxmlformats-package.relationships+xml",
                "xml": "application/xml"}
    for name in media:
        ext = name.rsplit(".", 1)[1]
        defaults.setdefault(ext, MEDIA_CONTENT_TYPES.get(ext, "application/octet-stream"))
    overrides = [("/ppt/presentation.xml", PML_CT + "presentation.main+xml")]
    overrides += [(f"/ppt/slides/slide{n}.xml", PML_CT + "slide+xml") for n in slides]
    overrides += [(f"/ppt/slideLayouts/slideLayout{n}.xml", PML_CT + "slideLayout+xml")
                  for n in sorted(layout_masters)]
    overrides += [(f"/ppt/slideMasters/slideMaster{n}.xml", PML_CT + "slideMaster+xml")
                  for n in masters]
    overrides.append(("/ppt/theme/theme1.xml", "application/vnd.openxmlformats-officedocument.theme+xml"))
    ct_body = "".join(f'<Default Extension="{e}" ContentType="{c}"/>' for e, c in defaults.items())
    ct_body += "".join(f'<Override PartName="{p}" ContentType="{c}"/>' for p, c in overrides)
    entries["[Content_Types].xml"] = (XML_DECL + f'<Types xmlns="{CT_NS}">{ct_body}</Types>').encode()

    entries["_rels/.rels"] = _rels([("rId1", "officeDocument", "ppt/presentation.xml")])

    # Presentation
    master_ids = "".join(f'<p:sldMasterId id="{2147483648 + m}" r:id="rIdM{m}"/>' for m in masters)
    slide_ids = "".join(f'<p:sldId id="{255 + n}" r:id="rIdS{n}"/>' for n in slides)
    entries["ppt/presentation.xml"] = (
        XML_DECL + f'<p:presentation xmlns:p="{P_NS}" xmlns:r="{R_NS}">'
        f'<p:sldMasterIdLst>{master_ids}</p:sldMasterIdLst>'
        f'<p:sldIdLst>{slide_ids}</p:sldIdLst></p:presentation>').encode()
    pres_rels = [(f"rIdM{m}", "slideMaster", f"slideMasters/slideMaster{m}.xml") for m in masters]
    pres_rels += [(f"rIdS{n}", "slide", f"slides/slide{n}.xml") for n in slides]
    pres_rels.append(("rIdT1", "theme", "theme/theme1.xml"))
    entries["ppt/_rels/presentation.xml.rels"] = _rels(pres_rels)

    # Slides
    for n, layout in zip(slides, slide_layouts):
        entries[f"ppt/slides/slide{n}.xml"] = _part("sld")
        rels = [("rId1", "slideLayout", f"../slideLayouts/slideLayout{layout}.xml")]
        rels += [(f"rId{i + 2}", "image", f"../media/{name}")
                 for i, name in enumerate(slide_images.get(n, []))]
        entries[f"ppt/slides/_rels/slide{n}.xml.rels"] = _rels(rels)

    # Layouts
    for n, master in sorted(layout_masters.items()):
        entries[f"ppt/slideLayouts/slideLayout{n}.xml"] = _part("sldLayout")
        rels = [("rId1", "slideMaster", f"../slideMasters/slideMaster{master}.xml")]
        rels += [(f"rId{i + 2}", "image", f"../media/{name}")
                 for i, name in enumerate(layout_images.get(n, []))]
        entries[f"ppt/slideLayouts/_rels/slideLayout{n}.xml.rels"] = _rels(rels)

    # Masters
    for m in masters:
        owned = sorted(n for n, master in layout_masters.items() if master == m)
        layout_ids = "".join(f'<p:sldLayoutId id="{2147483700 + n}" r:id="rId{i + 1}"/>'
                             for i, n in enumerate(owned))
        entries[f"ppt/slideMasters/slideMaster{m}.xml"] = _part(
            "sldMaster", f"<p:sldLayoutIdLst>{layout_ids}</p:sldLayoutIdLst>")
        rels = [(f"rId{i + 1}", "slideLayout", f"../slideLayouts/slideLayout{n}.xml")
                for i, n in enumerate(owned)]
        rels.append(("rIdT", "theme", "../theme/theme1.xml"))
        rels += [(f"rIdI{i + 1}", "image", f"../media/{name}")
                 for i, name in enumerate(master_images.get(m, []))]
        entries[f"ppt/slideMasters/_rels/slideMaster{m}.xml.rels"] = _rels(rels)

    entries["ppt/theme/theme1.xml"] = (XML_DECL + '<a:theme xmlns:a="http://schemas.openxmlformats.org/'
                                       'drawingml/2006/main" name="Office"/>').encode()

    for name, data in media.items():
        entries[f"ppt/media/{name}"] = data

    entries.update(extra_entries or {})

    with zipfile.ZipFile(path, "w", zipfile.ZIP_DEFLATED) as zf:
        for name, data in entries.items():
            zf.writestr(name, data)
    return path


def scenario_package(path: Path) -> Path:
    """
    3 slides using layouts 1-3, layout 4 unused, masters 1 and 2 both still
    used, and one TIFF referenced only by slide 2.
    """
    return build_package(
        path,
        slide_layouts=[1, 2, 3],
        layout_masters={1: 1, 2: 1, 3: 2, 4: 2},
        slide_images={2: ["image1.tiff"]},
        media={"image1.tiff": tiff_bytes()},
    )


def read_entries(path: Path) -> Dict[str, bytes]:
    with zipfile.ZipFile(path) as zf:
        return {name: zf.read(name) for name in zf.namelist()}
