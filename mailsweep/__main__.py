from mailsweep.cli import main

raise SystemExit(main())
