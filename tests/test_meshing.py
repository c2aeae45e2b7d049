"""Tests for the gmsh glue.

Run with: pytest tests/test_meshing.py -v
"""

import numpy as np
import pytest

gmsh = pytest.importorskip("gmsh")

from halfguide import intg_u_v, periodicity_conditions  # noqa: E402
from halfguide.meshing import MeshingConfig, generate_rectangle  # noqa: E402


class TestGenerateRectangle:
    """Test periodic rectangle generation through gmsh."""

    def test_structured_cell(self, tmp_path):
        config = MeshingConfig(structured=True, num_nodes=5, workdir=str(tmp_path), name="cell")
        mesh = generate_rectangle((0.0, 1.0), (0.0, 2.0), config)
        assert (tmp_path / "cell.msh").exists()
        for name in ("xmin", "xmax", "ymin", "ymax", "volumic"):
            assert name in mesh.domains
        assert np.isclose(intg_u_v(mesh.domain("volumic")).sum(), 2.0)
        assert mesh.domain("xmin").num_points == mesh.domain("xmax").num_points == 5
        # Facing faces match point by point
        periodicity_conditions(mesh, 0)
        periodicity_conditions(mesh, 1)

    def test_mirror_names(self, tmp_path):
        config = MeshingConfig(mesh_size=0.25, workdir=str(tmp_path))
        mesh = generate_rectangle((0.0, -1.0), (0.0, 1.0), config)
        assert np.allclose(mesh.domain("xmin").points[:, 0], 0.0)
        assert np.allclose(mesh.domain("xmax").points[:, 0], -1.0)


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
