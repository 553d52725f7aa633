"""L1 batch synchronization: committee map, call-data decoding, start block, batches and reorgs."""