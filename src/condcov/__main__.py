from condcov._cli import main

raise SystemExit(main())
