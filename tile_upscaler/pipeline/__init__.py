"""
Tile Upscaling Pipeline

Partition, process, reconstruct:
1. Tiler - overlapping tile decomposition
2. Scheduler - bounded-concurrency tile enhancement
3. Refiner - optional extra detail passes
4. Merger - smoothstep-feathered weighted reconstruction
5. Post-processing - anti-block, denoise, sharpen, saturation
"""
