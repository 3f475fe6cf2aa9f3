import taichi as ti

# one runtime for the whole session: CPU, double precision
ti.init(arch=ti.cpu, default_fp=ti.f64)
